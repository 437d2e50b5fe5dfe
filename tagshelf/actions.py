import asyncio
import os
import subprocess
import sys
from typing import List, Optional, Sequence

from .gateway import LocalGateway
from .results import ResultListController


def _full_path(repo_path: str, rel_path: str) -> str:
    return os.path.normpath(os.path.join(repo_path, *rel_path.split("/")))


def selected_item_paths(controller: ResultListController) -> Optional[List[str]]:
    """Absolute paths of the selected items, or None while some are still loading.

    Missing details are requested from the cache as a side effect, so calling
    again once they arrive succeeds.
    """
    repo_path = controller.path
    if repo_path is None:
        return None
    paths: List[str] = []
    all_loaded = True
    for item_id in controller.selected_item_ids():
        details = controller.cache.get(item_id)
        if details is None:
            all_loaded = False
            continue
        paths.append(_full_path(repo_path, details.path))
    return paths if all_loaded else None


async def load_selected_item_paths(controller: ResultListController) -> List[str]:
    repo_path = controller.path
    if repo_path is None:
        return []
    details = await asyncio.gather(*(controller.cache.load(i) for i in controller.selected_item_ids()))
    return [_full_path(repo_path, d.path) for d in details]


def selection_as_text(controller: ResultListController) -> Optional[str]:
    """Newline separated paths for the clipboard."""
    paths = selected_item_paths(controller)
    if paths is None:
        return None
    return "\n".join(paths)


def launch_file(file_path: str) -> None:
    """Open a file in its default application."""
    if sys.platform.startswith("win"):
        os.startfile(file_path)  # type: ignore[attr-defined]
    elif sys.platform == "darwin":
        subprocess.Popen(["open", file_path])
    else:
        subprocess.Popen(["xdg-open", file_path])


def reveal_file(file_path: str) -> None:
    """Show a file in the platform's file manager."""
    if sys.platform.startswith("win"):
        subprocess.Popen(["explorer", "/select,", file_path])
    elif sys.platform == "darwin":
        subprocess.Popen(["open", "-R", file_path])
    else:
        subprocess.Popen(["xdg-open", os.path.dirname(file_path)])


async def launch_selected_items(controller: ResultListController) -> int:
    paths = await load_selected_item_paths(controller)
    for path in paths:
        launch_file(path)
    return len(paths)


async def reveal_selected_items(controller: ResultListController) -> int:
    paths = await load_selected_item_paths(controller)
    for path in paths:
        reveal_file(path)
    return len(paths)


async def tag_selected_items(gateway: LocalGateway, controller: ResultListController, tags: Sequence[str]) -> None:
    await gateway.insert_tags(controller.selected_item_ids(), tags)


async def untag_selected_items(gateway: LocalGateway, controller: ResultListController, tags: Sequence[str]) -> None:
    await gateway.remove_tags(controller.selected_item_ids(), tags)
