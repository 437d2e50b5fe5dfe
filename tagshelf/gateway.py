import asyncio
import logging
import os
import sqlite3
from typing import Callable, List, Optional, Protocol, Sequence

from .db import Database, TagCount
from .events import (
    EventListener,
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
from .items import ItemDetails
from .query import QuerySyntaxError, to_sql
from .scanner import ScanResult, determine_filetype, list_files, scan_directory

logger = logging.getLogger(__name__)

DEFAULT_WATCH_INTERVAL = 2.0


class GatewayError(Exception):
    pass


class InvalidQueryError(GatewayError):
    pass


class ItemNotFoundError(GatewayError):
    pass


class RepositoryNotOpenError(GatewayError):
    pass


class BackendGateway(Protocol):
    async def run_query(self, text: str) -> List[int]:
        ...

    async def fetch_item_details(self, item_id: int) -> ItemDetails:
        ...

    async def get_repository_path(self) -> Optional[str]:
        ...

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        ...


class LocalGateway:
    """In-process backend over a repository's SQLite tag index.

    Blocking database and filesystem work runs in worker threads; push events
    are delivered to subscribers on the event loop.
    """

    def __init__(self) -> None:
        self._db: Optional[Database] = None
        self._listeners: List[EventListener] = []
        self._status: Optional[ManagerStatus] = None
        self._scan_lock = asyncio.Lock()
        self._watch_task: Optional["asyncio.Task[None]"] = None

    @property
    def status(self) -> Optional[ManagerStatus]:
        return self._status

    @property
    def path(self) -> Optional[str]:
        return self._db.repo_dir if self._db is not None else None

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: PushEvent) -> None:
        logger.debug("emit %s", type(event).__name__)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event listener failed on %r", event)

    def _set_status(self, status: Optional[ManagerStatus]) -> None:
        if status is self._status:
            return
        self._status = status
        self._emit(StatusChanged(status))

    def _require_db(self) -> Database:
        if self._db is None:
            raise RepositoryNotOpenError("no repository is open")
        return self._db

    # -- repository lifecycle --------------------------------------------

    async def open_repository(self, path: str) -> ScanResult:
        """Index ``path`` and make it the open repository.

        The previously open repository stays open if this fails.
        """
        repo_dir = os.path.abspath(path)
        if not os.path.isdir(repo_dir):
            raise GatewayError(f"not a directory: {repo_dir}")
        try:
            db = await asyncio.to_thread(Database, repo_dir)
            result = await self._scan(db)
        except (OSError, sqlite3.Error) as e:
            raise GatewayError(f"cannot open repository {repo_dir}: {e}") from e
        await self.stop_watching()
        if self._db is not None:
            logger.info("closed repository %s", self._db.repo_dir)
        self._db = db
        logger.info("opened repository %s", repo_dir)
        self._emit(RepositoryPathChanged(repo_dir))
        return result

    async def close_repository(self) -> None:
        await self.stop_watching()
        if self._db is None:
            return
        logger.info("closed repository %s", self._db.repo_dir)
        self._db = None
        self._set_status(None)
        self._emit(RepositoryPathChanged(None))

    async def get_repository_path(self) -> Optional[str]:
        return self.path

    async def resync(self) -> ScanResult:
        """Rescan the whole tree and announce it as one wholesale change."""
        db = self._require_db()
        result = await self._scan(db)
        self._emit(RepositoryResynced(db.repo_dir))
        return result

    async def _scan(self, db: Database) -> ScanResult:
        async with self._scan_lock:
            self._set_status(ManagerStatus.SCANNING_DIRECTORY)
            try:
                files = await asyncio.to_thread(list_files, db.repo_dir)
                self._set_status(ManagerStatus.UPDATING_REPO)
                return await asyncio.to_thread(scan_directory, db, files)
            finally:
                self._set_status(ManagerStatus.IDLE)

    async def refresh(self) -> ScanResult:
        """Rescan and announce each added, removed or renamed item."""
        db = self._require_db()
        async with self._scan_lock:
            result = await asyncio.to_thread(scan_directory, db)
        if not result.changed:
            return result
        for item_id in result.removed:
            path = result.removed_paths.get(item_id, "")
            self._emit(ItemRemoved(ItemDetails(id=item_id, path=path, tags=(), filetype=determine_filetype(path))))
        for record in await asyncio.to_thread(db.get_items, result.added):
            self._emit(ItemAdded(ItemDetails.from_record(record)))
        # content changes in place are reported like renames: same id, new details
        for record in await asyncio.to_thread(db.get_items, result.renamed + result.updated):
            self._emit(ItemRenamed(ItemDetails.from_record(record)))
        return result

    def start_watching(self, interval: float = DEFAULT_WATCH_INTERVAL) -> "asyncio.Task[None]":
        self._require_db()
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.get_running_loop().create_task(self._watch(interval))
        return self._watch_task

    async def stop_watching(self) -> None:
        task, self._watch_task = self._watch_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _watch(self, interval: float) -> None:
        logger.debug("watcher started, polling every %.1fs", interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh()
            except RepositoryNotOpenError:
                return
            except (OSError, sqlite3.Error):
                logger.exception("refresh failed")

    # -- queries ---------------------------------------------------------

    async def run_query(self, text: str) -> List[int]:
        db = self._require_db()
        try:
            where_sql, params = to_sql(text)
        except QuerySyntaxError as e:
            raise InvalidQueryError(str(e)) from e
        return await asyncio.to_thread(db.query_ids, where_sql, params)

    async def fetch_item_details(self, item_id: int) -> ItemDetails:
        db = self._require_db()
        record = await asyncio.to_thread(db.get_item, item_id)
        if record is None:
            raise ItemNotFoundError(f"no item with id {item_id}")
        return ItemDetails.from_record(record)

    async def find_item(self, path: str) -> ItemDetails:
        """Look an item up by absolute path or path relative to the repository."""
        db = self._require_db()
        if os.path.isabs(path):
            path = os.path.relpath(path, db.repo_dir)
        rel_path = os.path.normpath(path).replace(os.sep, "/")
        record = await asyncio.to_thread(db.get_item_by_path, rel_path)
        if record is None:
            raise ItemNotFoundError(f"not indexed: {path}")
        return ItemDetails.from_record(record)

    async def all_tags(self) -> List[TagCount]:
        db = self._require_db()
        return await asyncio.to_thread(db.all_tags)

    # -- tag mutation ----------------------------------------------------

    async def insert_tags(self, item_ids: Sequence[int], tags: Sequence[str]) -> None:
        if not item_ids:
            return
        db = self._require_db()
        await asyncio.to_thread(db.add_item_tags, list(item_ids), list(tags))
        await self._announce_tags(db, item_ids)

    async def remove_tags(self, item_ids: Sequence[int], tags: Sequence[str]) -> None:
        if not item_ids:
            return
        db = self._require_db()
        await asyncio.to_thread(db.remove_item_tags, list(item_ids), list(tags))
        await self._announce_tags(db, item_ids)

    async def _announce_tags(self, db: Database, item_ids: Sequence[int]) -> None:
        records = await asyncio.to_thread(db.get_items, list(item_ids))
        self._emit(TagsChanged(tuple(ItemDetails.from_record(r) for r in records)))
