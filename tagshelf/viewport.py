import math
from typing import NamedTuple

DEFAULT_PRELOAD_ROWS = 10


class ViewportWindow(NamedTuple):
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start

    def positions(self) -> range:
        return range(self.start, self.end)


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(value, hi))


def preload_margin(item_size: float, rows: int = DEFAULT_PRELOAD_ROWS) -> float:
    """Pixels rendered beyond each edge of the viewport."""
    return item_size * rows


def window(
    scroll_offset: float,
    viewport_size: float,
    item_size: float,
    item_count: int,
    margin: float,
) -> ViewportWindow:
    """Positions ``[start, end)`` to materialize for the current scroll state.

    The scroll offset is first pulled back into the scrollable range, since
    the view may still report an offset from before the list shrank. Each
    bound is then clamped on its own into ``[0, item_count]``.
    """
    if item_size <= 0:
        raise ValueError(f"item_size must be positive, got {item_size}")
    item_count = max(0, item_count)
    max_offset = max(0.0, item_count * item_size - viewport_size)
    offset = min(max(scroll_offset, 0.0), max_offset)
    start = _clamp(math.floor((offset - margin) / item_size) - 1, 0, item_count)
    end = _clamp(math.ceil((offset + viewport_size + margin) / item_size), 0, item_count)
    return ViewportWindow(start, end)
