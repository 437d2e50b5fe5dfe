import asyncio
import random

import pytest

from tagshelf.events import (
    ItemAdded,
    ItemRemoved,
    ItemRenamed,
    ManagerStatus,
    RepositoryPathChanged,
    RepositoryResynced,
    StatusChanged,
    TagsChanged,
)
from tagshelf.gateway import GatewayError
from tagshelf.results import ResultListController
from tagshelf.selection import RangeSelection


async def open_controller(gateway, query: str = "") -> ResultListController:
    controller = ResultListController(gateway, query=query)
    controller.attach()
    await controller.set_repository_path(gateway.path)
    return controller


# ============================================================================
# Query cycle
# ============================================================================

@pytest.mark.asyncio
async def test_repository_path_loads_list(gateway):
    controller = await open_controller(gateway)
    assert controller.item_ids == (10, 11, 12, 13, 14)
    assert controller.path == "/repo"
    assert controller.index_to_item_id(2) == 12
    assert controller.item_id_to_index(14) == 4
    with pytest.raises(IndexError):
        controller.index_to_item_id(5)


@pytest.mark.asyncio
async def test_set_query_without_repository_does_nothing(gateway):
    controller = ResultListController(gateway)
    assert await controller.set_query("a") is False
    assert controller.query == "a"
    assert gateway.queries == []


@pytest.mark.asyncio
async def test_later_query_wins_when_earlier_resolves_last(gateway, settle):
    controller = await open_controller(gateway)
    gateway.hold = True
    first = asyncio.create_task(controller.set_query("a"))
    second = asyncio.create_task(controller.set_query("b"))
    await settle()
    gateway.release(1, [2, 3])
    assert await second is True
    gateway.release(0, [1])
    assert await first is False
    assert controller.item_ids == (2, 3)
    assert controller.query == "b"


@pytest.mark.asyncio
async def test_later_query_wins_when_earlier_resolves_first(gateway, settle):
    controller = await open_controller(gateway)
    gateway.hold = True
    first = asyncio.create_task(controller.set_query("a"))
    second = asyncio.create_task(controller.set_query("b"))
    await settle()
    gateway.release(0, [1])
    assert await first is False
    assert controller.item_ids == (10, 11, 12, 13, 14)
    gateway.release(1, [2, 3])
    assert await second is True
    assert controller.item_ids == (2, 3)


@pytest.mark.asyncio
async def test_new_query_clears_cache_and_selection(gateway, details):
    gateway.results["a"] = [11, 12]
    controller = await open_controller(gateway)
    controller.cache.set(10, details(10))
    controller.selection.isolate(0)
    await controller.set_query("a")
    assert controller.item_ids == (11, 12)
    assert len(controller.cache) == 0
    assert controller.selection.is_empty


@pytest.mark.asyncio
async def test_invalid_query_keeps_list_and_flags_input(gateway):
    gateway.invalid.add("-")
    controller = await open_controller(gateway)
    changes = []
    controller.subscribe(changes.append)
    controller.selection.isolate(1)
    assert await controller.set_query("-") is False
    assert controller.query_invalid
    assert controller.item_ids == (10, 11, 12, 13, 14)
    assert controller.selection.selected_positions() == [1]
    assert changes == ["query_invalid"]
    gateway.results["a"] = [13]
    assert await controller.set_query("a") is True
    assert not controller.query_invalid


@pytest.mark.asyncio
async def test_backend_failure_propagates_and_keeps_list(gateway):
    controller = await open_controller(gateway)

    async def broken(text):
        raise GatewayError("backend unavailable")

    gateway.run_query = broken
    with pytest.raises(GatewayError):
        await controller.set_query("a")
    assert controller.item_ids == (10, 11, 12, 13, 14)


# ============================================================================
# Push events
# ============================================================================

@pytest.mark.asyncio
async def test_item_added_requeries_and_keeps_cache_and_selection(gateway, details):
    controller = await open_controller(gateway)
    controller.cache.set(10, details(10))
    controller.selection.isolate(2)
    gateway.results[""] = [10, 9, 11, 12, 13, 14]
    gateway.emit(ItemAdded(details(9)))
    await controller.wait_idle()
    assert controller.item_ids == (10, 9, 11, 12, 13, 14)
    assert 10 in controller.cache
    assert controller.selected_item_ids() == [12]


@pytest.mark.asyncio
async def test_item_added_keeps_range_selection_contiguous(gateway, details):
    controller = await open_controller(gateway)
    controller.selection.isolate(2)
    controller.selection.extend_to(3)
    gateway.results[""] = [9, 10, 11, 12, 13, 14]
    gateway.emit(ItemAdded(details(9)))
    await controller.wait_idle()
    assert controller.selection.state == RangeSelection(3, 4)


@pytest.mark.asyncio
async def test_item_removed_shifts_selection_to_same_items(gateway, details):
    controller = await open_controller(gateway)
    controller.selection.isolate(1)
    controller.selection.add(3)
    gateway.emit(ItemRemoved(details(11)))
    assert controller.item_ids == (10, 12, 13, 14)
    assert controller.selection.selected_positions() == [2]
    assert controller.selected_item_ids() == [13]


@pytest.mark.asyncio
async def test_removing_unlisted_item_changes_nothing(gateway, details):
    controller = await open_controller(gateway)
    changes = []
    controller.subscribe(changes.append)
    gateway.emit(ItemRemoved(details(99)))
    assert controller.item_ids == (10, 11, 12, 13, 14)
    assert changes == []


@pytest.mark.asyncio
async def test_item_removed_during_query_is_filtered_from_result(gateway, details, settle):
    controller = await open_controller(gateway)
    gateway.hold = True
    pending = asyncio.create_task(controller.set_query("x"))
    await settle()
    gateway.emit(ItemRemoved(details(12)))
    gateway.release(0, [11, 12, 13])
    assert await pending is True
    assert controller.item_ids == (11, 13)


@pytest.mark.asyncio
async def test_rename_and_tag_events_update_cache(gateway, details):
    controller = await open_controller(gateway)
    controller.cache.set(11, details(11, "a.png"))
    gateway.emit(ItemRenamed(details(11, "b.png")))
    assert controller.cache.peek(11).path == "b.png"
    gateway.emit(TagsChanged((details(11, "b.png", ("red",)), details(12, tags=("red",)))))
    assert controller.cache.peek(11).tags == ("red",)
    assert controller.cache.peek(12).tags == ("red",)
    assert controller.item_ids == (10, 11, 12, 13, 14)


@pytest.mark.asyncio
async def test_status_event_is_exposed(gateway):
    controller = await open_controller(gateway)
    changes = []
    controller.subscribe(changes.append)
    gateway.emit(StatusChanged(ManagerStatus.SCANNING_DIRECTORY))
    assert controller.status is ManagerStatus.SCANNING_DIRECTORY
    assert changes == ["status"]


@pytest.mark.asyncio
async def test_resync_reloads_and_resets(gateway, details):
    controller = await open_controller(gateway)
    controller.cache.set(10, details(10))
    controller.selection.select_all()
    gateway.results[""] = [12, 10]
    gateway.emit(RepositoryResynced("/repo"))
    await controller.wait_idle()
    assert controller.item_ids == (12, 10)
    assert len(controller.cache) == 0
    assert controller.selection.is_empty


@pytest.mark.asyncio
async def test_resync_overtaken_by_item_added_still_resets(gateway, details, settle):
    controller = await open_controller(gateway)
    controller.selection.isolate(0)
    gateway.hold = True
    gateway.emit(RepositoryResynced("/repo"))
    await settle()
    gateway.emit(ItemAdded(details(15)))
    await settle()
    gateway.release(1, [10, 15])
    gateway.release(0, [10])
    await controller.wait_idle()
    assert controller.item_ids == (10, 15)
    assert controller.selection.is_empty


@pytest.mark.asyncio
async def test_repository_closed_empties_everything(gateway, details):
    controller = await open_controller(gateway)
    controller.cache.set(10, details(10))
    controller.selection.isolate(0)
    gateway.emit(RepositoryPathChanged(None))
    await controller.wait_idle()
    assert controller.path is None
    assert controller.item_ids == ()
    assert len(controller.cache) == 0
    assert controller.selection.is_empty


@pytest.mark.asyncio
async def test_refresh_path_follows_backend(gateway):
    controller = ResultListController(gateway)
    await controller.refresh_path()
    assert controller.path == "/repo"
    assert len(controller) == 5


@pytest.mark.asyncio
async def test_detach_stops_events(gateway, details):
    controller = await open_controller(gateway)
    controller.detach()
    gateway.emit(ItemRemoved(details(10)))
    assert len(controller) == 5


def test_unknown_event_is_rejected(gateway):
    controller = ResultListController(gateway)
    with pytest.raises(TypeError):
        controller.apply_push_event(object())


@pytest.mark.asyncio
async def test_failed_query_leaves_item_added_incremental(gateway, details):
    controller = await open_controller(gateway)
    working = gateway.run_query

    async def broken(text):
        raise GatewayError("backend unavailable")

    gateway.run_query = broken
    with pytest.raises(GatewayError):
        await controller.set_query("")
    gateway.run_query = working
    controller.cache.set(10, details(10))
    controller.selection.isolate(1)
    gateway.emit(ItemAdded(details(9)))
    await controller.wait_idle()
    assert 10 in controller.cache
    assert controller.selected_item_ids() == [11]


# ============================================================================
# Shuffling
# ============================================================================

class RotateRight(random.Random):
    def shuffle(self, x):
        x.insert(0, x.pop())


@pytest.mark.asyncio
async def test_shuffle_keeps_items_cache_and_selection(gateway, details):
    controller = await open_controller(gateway)
    controller.cache.set(12, details(12))
    controller.selection.isolate(1)
    controller.selection.add(3)
    changes = []
    controller.subscribe(changes.append)
    controller.shuffle(random.Random(7))
    assert sorted(controller.item_ids) == [10, 11, 12, 13, 14]
    assert sorted(controller.selected_item_ids()) == [11, 13]
    assert 12 in controller.cache
    assert changes == ["items"]


@pytest.mark.asyncio
async def test_shuffle_moves_range_with_its_items(gateway):
    controller = await open_controller(gateway)
    controller.selection.isolate(1)
    controller.selection.extend_to(2)
    controller.shuffle(RotateRight())
    assert controller.item_ids == (14, 10, 11, 12, 13)
    assert controller.selection.state == RangeSelection(2, 3)
    assert controller.selected_item_ids() == [11, 12]
