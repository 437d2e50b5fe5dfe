import asyncio
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from tagshelf.gateway import InvalidQueryError, ItemNotFoundError
from tagshelf.items import ItemDetails
from tagshelf.scanner import determine_filetype


def make_details(item_id: int, path: Optional[str] = None, tags: Tuple[str, ...] = ()) -> ItemDetails:
    path = path or f"file_{item_id}.png"
    return ItemDetails(id=item_id, path=path, tags=tags, filetype=determine_filetype(path))


class FakeGateway:
    """Backend double whose query answers can be held back and released in any order."""

    def __init__(self) -> None:
        self.path: Optional[str] = "/repo"
        self.results: Dict[str, List[int]] = {"": [10, 11, 12, 13, 14]}
        self.invalid: Set[str] = set()
        self.hold = False
        self.pending: List[Tuple[str, "asyncio.Future[List[int]]"]] = []
        self.queries: List[str] = []
        self.details: Dict[int, ItemDetails] = {}
        self.fetches: Dict[int, int] = {}
        self._listeners: List[Callable] = []

    async def run_query(self, text: str) -> List[int]:
        self.queries.append(text)
        if self.hold:
            fut = asyncio.get_running_loop().create_future()
            self.pending.append((text, fut))
            return await fut
        if text in self.invalid:
            raise InvalidQueryError(text)
        return list(self.results.get(text, []))

    def release(self, index: int, item_ids: List[int]) -> None:
        self.pending[index][1].set_result(item_ids)

    async def fetch_item_details(self, item_id: int) -> ItemDetails:
        self.fetches[item_id] = self.fetches.get(item_id, 0) + 1
        await asyncio.sleep(0)
        if item_id in self.details:
            return self.details[item_id]
        if item_id < 0:
            raise ItemNotFoundError(str(item_id))
        return make_details(item_id)

    async def get_repository_path(self) -> Optional[str]:
        return self.path

    def subscribe(self, listener: Callable) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def emit(self, event) -> None:
        for listener in list(self._listeners):
            listener(event)


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def details():
    return make_details
