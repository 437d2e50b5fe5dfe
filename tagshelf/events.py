import enum
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

from .items import ItemDetails


class ManagerStatus(enum.Enum):
    IDLE = "idle"
    SCANNING_DIRECTORY = "scanning_directory"
    UPDATING_REPO = "updating_repo"


@dataclass(frozen=True)
class ItemAdded:
    item: ItemDetails


@dataclass(frozen=True)
class ItemRemoved:
    item: ItemDetails


@dataclass(frozen=True)
class ItemRenamed:
    item: ItemDetails


@dataclass(frozen=True)
class TagsChanged:
    """Tags were added to or removed from one or more items."""

    items: Tuple[ItemDetails, ...]


@dataclass(frozen=True)
class StatusChanged:
    status: Optional[ManagerStatus]


@dataclass(frozen=True)
class RepositoryPathChanged:
    path: Optional[str]


@dataclass(frozen=True)
class RepositoryResynced:
    path: str


PushEvent = Union[
    ItemAdded,
    ItemRemoved,
    ItemRenamed,
    TagsChanged,
    StatusChanged,
    RepositoryPathChanged,
    RepositoryResynced,
]

EventListener = Callable[[PushEvent], None]
