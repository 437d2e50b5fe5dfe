import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .db import ItemRecord
from .scanner import FileType, determine_filetype

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemDetails:
    id: int
    path: str
    tags: Tuple[str, ...]
    filetype: FileType
    size_bytes: Optional[int] = None
    modified_time_utc: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def from_record(cls, record: ItemRecord) -> "ItemDetails":
        return cls(
            id=record.id,
            path=record.path,
            tags=tuple(sorted(record.tags)),
            filetype=determine_filetype(record.path),
            size_bytes=record.size_bytes,
            modified_time_utc=record.modified_time_utc,
            width=record.width,
            height=record.height,
        )

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class ItemDetailCache:
    """Lazily populated ``item id -> ItemDetails`` store.

    ``get`` never blocks: a miss starts a background fetch and returns None so
    the caller can render a loading row. Misses for the same id share one
    fetch. Entries are only ever dropped all at once by ``clear``.
    """

    def __init__(self, fetch: Callable[[int], Awaitable[ItemDetails]]) -> None:
        self._fetch = fetch
        self._entries: Dict[int, ItemDetails] = {}
        self._inflight: Dict[int, "asyncio.Task[ItemDetails]"] = {}
        self._epoch = 0
        self._listeners: List[Callable[[int], None]] = []

    def __contains__(self, item_id: int) -> bool:
        return item_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, item_id: int) -> Optional[ItemDetails]:
        return self._entries.get(item_id)

    def get(self, item_id: int) -> Optional[ItemDetails]:
        cached = self._entries.get(item_id)
        if cached is not None:
            return cached
        self._start_fetch(item_id)
        return None

    async def load(self, item_id: int) -> ItemDetails:
        cached = self._entries.get(item_id)
        if cached is not None:
            return cached
        return await asyncio.shield(self._start_fetch(item_id))

    def set(self, item_id: int, details: ItemDetails) -> None:
        self._entries[item_id] = details
        self._notify(item_id)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()
        self._epoch += 1

    def pending(self) -> int:
        return len(self._inflight)

    def add_listener(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Call ``listener(item_id)`` whenever an entry is written."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _start_fetch(self, item_id: int) -> "asyncio.Task[ItemDetails]":
        task = self._inflight.get(item_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run_fetch(item_id, self._epoch))
            # failures are already logged in _run_fetch
            task.add_done_callback(_retrieve_exception)
            self._inflight[item_id] = task
        return task

    async def _run_fetch(self, item_id: int, epoch: int) -> ItemDetails:
        try:
            details = await self._fetch(item_id)
        except Exception:
            if epoch == self._epoch:
                self._inflight.pop(item_id, None)
            logger.exception("failed to fetch details for item %d", item_id)
            raise
        if epoch != self._epoch:
            logger.debug("dropping details for item %d fetched before cache clear", item_id)
            return details
        self._inflight.pop(item_id, None)
        if item_id not in self._entries:
            self.set(item_id, details)
        return self._entries[item_id]

    def _notify(self, item_id: int) -> None:
        for listener in list(self._listeners):
            listener(item_id)


def _retrieve_exception(task: "asyncio.Task[ItemDetails]") -> None:
    if not task.cancelled():
        task.exception()
