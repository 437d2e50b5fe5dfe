"""The live result list and the state hanging off it.

:class:`ResultListController` owns the ordered item ids for the current query
and repository, and is the only place where list changes cascade into the
item detail cache and the selection. Structural changes (new query, new
repository, resync) clear both; push events patch the list in place.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .events import (
    ItemAdded,
    ItemRemoved,
    ItemRenamed,
    ManagerStatus,
    PushEvent,
    RepositoryPathChanged,
    RepositoryResynced,
    StatusChanged,
    TagsChanged,
)
from .gateway import BackendGateway, InvalidQueryError
from .items import ItemDetailCache
from .selection import Selection

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class ResultListController:
    def __init__(self, gateway: BackendGateway, query: str = "") -> None:
        self._gateway = gateway
        self._item_ids: List[int] = []
        self._query = query
        self._path: Optional[str] = None
        self._status: Optional[ManagerStatus] = None
        self._query_invalid = False
        # bumped for every query issued; only the latest result is applied
        self._generation = 0
        self._awaiting: Optional[int] = None
        self._reset_pending = False
        self._removed_while_awaiting: Set[int] = set()
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._listeners: List[ChangeListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.cache = ItemDetailCache(gateway.fetch_item_details)
        self.selection = Selection(lambda: len(self._item_ids))

    # -- accessors -------------------------------------------------------

    @property
    def item_ids(self) -> Tuple[int, ...]:
        return tuple(self._item_ids)

    def __len__(self) -> int:
        return len(self._item_ids)

    @property
    def query(self) -> str:
        return self._query

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def status(self) -> Optional[ManagerStatus]:
        return self._status

    @property
    def query_invalid(self) -> bool:
        return self._query_invalid

    def index_to_item_id(self, position: int) -> int:
        if not 0 <= position < len(self._item_ids):
            raise IndexError(f"position {position} is out of bounds")
        return self._item_ids[position]

    def item_id_to_index(self, item_id: int) -> int:
        """Position of ``item_id``; raises ValueError if it is not listed."""
        return self._item_ids.index(item_id)

    def selected_item_ids(self) -> List[int]:
        return [self._item_ids[p] for p in self.selection.selected_positions()]

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener(what)`` when ``items``, ``query_invalid``, ``path`` or ``status`` change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self) -> None:
        """Start receiving the gateway's push events."""
        if self._unsubscribe is None:
            self._unsubscribe = self._gateway.subscribe(self.apply_push_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # -- query cycle -----------------------------------------------------

    async def set_query(self, text: str) -> bool:
        """Run ``text`` as the new filter. Returns whether its result was applied."""
        self._query = text
        if self._path is None:
            return False
        return await self._requery(reset=True)

    async def set_repository_path(self, path: Optional[str]) -> bool:
        self._path = path
        self._notify("path")
        # positions from the previous repository mean nothing here
        self._generation += 1
        self._awaiting = None
        self._reset_pending = False
        self._replace([], reset=True)
        if path is None:
            return True
        return await self._requery(reset=True)

    async def refresh_path(self) -> None:
        path = await self._gateway.get_repository_path()
        if path != self._path:
            await self.set_repository_path(path)

    async def _requery(self, reset: bool) -> bool:
        self._generation += 1
        generation = self._generation
        self._awaiting = generation
        self._removed_while_awaiting = set()
        if reset:
            self._reset_pending = True
        text = self._query
        logger.debug("querying %r (generation %d)", text, generation)
        try:
            item_ids = await self._gateway.run_query(text)
        except InvalidQueryError as e:
            if generation != self._generation:
                return False
            logger.debug("invalid query %r: %s", text, e)
            self._awaiting = None
            self._reset_pending = False
            self._set_query_invalid(True)
            return False
        except Exception:
            if generation != self._generation:
                logger.debug("superseded query %r failed", text, exc_info=True)
                return False
            self._awaiting = None
            self._reset_pending = False
            raise
        if generation != self._generation:
            logger.debug("dropping superseded result for %r (generation %d)", text, generation)
            return False
        if self._removed_while_awaiting:
            removed = self._removed_while_awaiting
            item_ids = [i for i in item_ids if i not in removed]
        reset = self._reset_pending
        self._awaiting = None
        self._reset_pending = False
        self._removed_while_awaiting = set()
        self._set_query_invalid(False)
        self._replace(item_ids, reset=reset)
        return True

    def shuffle(self, rng: Optional[random.Random] = None) -> None:
        """Put the listed items in random order; selected items stay selected."""
        item_ids = list(self._item_ids)
        (rng or random).shuffle(item_ids)
        self._replace(item_ids, reset=False)

    def _replace(self, item_ids: Sequence[int], reset: bool) -> None:
        if reset:
            self._item_ids = list(item_ids)
            self.cache.clear()
            self.selection.clear()
        else:
            mapping = self._carry_selection(item_ids)
            self._item_ids = list(item_ids)
            self.selection.remap_positions(mapping)
        self._notify("items")

    def _carry_selection(self, item_ids: Sequence[int]) -> Dict[int, int]:
        positions = self.selection.selected_positions()
        if not positions:
            return {}
        wanted = {self._item_ids[p]: p for p in positions}
        mapping: Dict[int, int] = {}
        for new_position, item_id in enumerate(item_ids):
            old_position = wanted.get(item_id)
            if old_position is not None:
                mapping[old_position] = new_position
        return mapping

    def _set_query_invalid(self, invalid: bool) -> None:
        if invalid != self._query_invalid:
            self._query_invalid = invalid
            self._notify("query_invalid")

    # -- push events -----------------------------------------------------

    def apply_push_event(self, event: PushEvent) -> None:
        logger.debug("push event %r", event)
        if isinstance(event, ItemAdded):
            # no way to tell client-side whether the new item matches the query
            if self._path is not None:
                self._spawn(self._requery(reset=False))
        elif isinstance(event, ItemRemoved):
            self._remove_item(event.item.id)
        elif isinstance(event, ItemRenamed):
            self.cache.set(event.item.id, event.item)
        elif isinstance(event, TagsChanged):
            for item in event.items:
                self.cache.set(item.id, item)
        elif isinstance(event, StatusChanged):
            self._status = event.status
            self._notify("status")
        elif isinstance(event, RepositoryPathChanged):
            self._spawn(self.set_repository_path(event.path))
        elif isinstance(event, RepositoryResynced):
            if self._path is not None:
                self._spawn(self._requery(reset=True))
        else:
            raise TypeError(f"unknown push event {event!r}")

    def _remove_item(self, item_id: int) -> None:
        if self._awaiting is not None:
            self._removed_while_awaiting.add(item_id)
        try:
            position = self._item_ids.index(item_id)
        except ValueError:
            return
        del self._item_ids[position]
        self.selection.remap_after_removal(position)
        self._notify("items")

    def _spawn(self, coro: Awaitable[object]) -> None:
        task = asyncio.get_running_loop().create_task(self._run_background(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_background(self, coro: Awaitable[object]) -> None:
        try:
            await coro
        except Exception:
            logger.exception("background list update failed")

    async def wait_idle(self) -> None:
        """Wait until requeries scheduled by push events have settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _notify(self, what: str) -> None:
        for listener in list(self._listeners):
            listener(what)
