"""Selection over positions in the result list.

A selection is empty (``None``), a :class:`RangeSelection` or a
:class:`DiscreteSelection`. Ranges are what shift-click and shift+arrow
produce and stay O(1) to extend; discrete sets come from ctrl-click and remember
the last toggled position as the anchor for the next range operation. Once a
selection turns discrete it never collapses back into a range.

Every operation validates its position against the current list length and
raises :class:`SelectionError` on a contract violation instead of guessing.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)


class SelectionError(RuntimeError):
    """The selection and the result list disagree."""


@dataclass(frozen=True)
class RangeSelection:
    root_index: int
    extend_to_index: int

    @property
    def bounds(self) -> Tuple[int, int]:
        if self.root_index <= self.extend_to_index:
            return self.root_index, self.extend_to_index
        return self.extend_to_index, self.root_index

    def positions(self) -> range:
        lo, hi = self.bounds
        return range(lo, hi + 1)

    def __contains__(self, position: int) -> bool:
        lo, hi = self.bounds
        return lo <= position <= hi


@dataclass(frozen=True)
class DiscreteSelection:
    indices: FrozenSet[int]
    last_toggled_index: int

    def __contains__(self, position: int) -> bool:
        return position in self.indices


SelectionState = Optional[Union[RangeSelection, DiscreteSelection]]


def _discrete(indices: Set[int], last_toggled_index: int) -> SelectionState:
    if not indices:
        return None
    return DiscreteSelection(frozenset(indices), last_toggled_index)


class Selection:
    def __init__(self, length: Callable[[], int]) -> None:
        self._length = length
        self._state: SelectionState = None
        self._listeners: List[Callable[[SelectionState], None]] = []

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def is_empty(self) -> bool:
        return self._state is None

    @property
    def selected_count(self) -> int:
        state = self._state
        if state is None:
            return 0
        if isinstance(state, RangeSelection):
            return len(state.positions())
        if isinstance(state, DiscreteSelection):
            return len(state.indices)
        raise TypeError(f"unknown selection state {state!r}")

    def selected_positions(self) -> List[int]:
        state = self._state
        if state is None:
            return []
        if isinstance(state, RangeSelection):
            return list(state.positions())
        if isinstance(state, DiscreteSelection):
            return sorted(state.indices)
        raise TypeError(f"unknown selection state {state!r}")

    def contains(self, position: int) -> bool:
        state = self._state
        if state is None:
            return False
        return position in state

    def focused_index(self) -> Optional[int]:
        """The position keyboard navigation moves from, if any."""
        state = self._state
        if state is None or self._length() == 0:
            return None
        if isinstance(state, RangeSelection):
            return state.extend_to_index
        if isinstance(state, DiscreteSelection):
            return state.last_toggled_index
        raise TypeError(f"unknown selection state {state!r}")

    def subscribe(self, listener: Callable[[SelectionState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- editing ---------------------------------------------------------

    def isolate(self, position: int) -> None:
        """Select only ``position`` (plain click, unmodified arrows)."""
        self._check(position)
        self._set(DiscreteSelection(frozenset((position,)), position))

    def add(self, position: int) -> None:
        """Ctrl-click on an unselected position."""
        self._check(position)
        state = self._state
        if state is None:
            self.isolate(position)
            return
        if position in state:
            raise SelectionError(f"position {position} is already selected")
        if isinstance(state, RangeSelection):
            indices = set(state.positions())
        elif isinstance(state, DiscreteSelection):
            indices = set(state.indices)
        else:
            raise TypeError(f"unknown selection state {state!r}")
        indices.add(position)
        self._set(DiscreteSelection(frozenset(indices), position))

    def add_to(self, end_position: int) -> None:
        """Ctrl+shift-click: extend towards ``end_position`` keeping what is selected."""
        self._check(end_position)
        state = self._state
        if state is None:
            self._set(RangeSelection(0, end_position))
            return
        if isinstance(state, RangeSelection):
            lo, hi = state.bounds
            indices = set(state.positions())
            if end_position < lo:
                indices.update(range(end_position, lo))
            elif end_position > hi:
                indices.update(range(hi + 1, end_position + 1))
            self._set(DiscreteSelection(frozenset(indices), end_position))
            return
        if isinstance(state, DiscreteSelection):
            start = state.last_toggled_index
            lo, hi = min(start, end_position), max(start, end_position)
            indices = set(state.indices)
            indices.update(range(lo, hi + 1))
            self._set(DiscreteSelection(frozenset(indices), end_position))
            return
        raise TypeError(f"unknown selection state {state!r}")

    def remove(self, position: int) -> None:
        """Ctrl-click on a selected position."""
        state = self._state
        if state is None:
            raise SelectionError("no active selection")
        if position not in state:
            raise SelectionError(f"position {position} is not selected")
        if isinstance(state, RangeSelection):
            indices = set(state.positions())
        elif isinstance(state, DiscreteSelection):
            indices = set(state.indices)
        else:
            raise TypeError(f"unknown selection state {state!r}")
        indices.discard(position)
        self._set(_discrete(indices, position))

    def extend_to(self, position: int) -> None:
        """Shift-click: range from the anchor to ``position``, replacing the rest."""
        self._check(position)
        state = self._state
        if state is None:
            self._set(RangeSelection(0, position))
        elif isinstance(state, RangeSelection):
            self._set(RangeSelection(state.root_index, position))
        elif isinstance(state, DiscreteSelection):
            self._set(RangeSelection(state.last_toggled_index, position))
        else:
            raise TypeError(f"unknown selection state {state!r}")

    def clear(self) -> None:
        self._set(None)

    def select_all(self) -> None:
        length = self._length()
        if length == 0:
            self.clear()
            return
        self._set(RangeSelection(0, length - 1))

    # -- keyboard navigation ---------------------------------------------

    def isolate_down(self) -> None:
        self._step(1, extend=False)

    def isolate_up(self) -> None:
        self._step(-1, extend=False)

    def extend_down(self) -> None:
        self._step(1, extend=True)

    def extend_up(self) -> None:
        self._step(-1, extend=True)

    def _step(self, delta: int, extend: bool) -> None:
        length = self._length()
        if length == 0:
            return
        focused = self.focused_index()
        if focused is None:
            self.isolate(0 if delta > 0 else length - 1)
            return
        target = min(max(focused + delta, 0), length - 1)
        if extend:
            self.extend_to(target)
        else:
            self.isolate(target)

    # -- list maintenance ------------------------------------------------

    def remap_after_removal(self, position: int) -> None:
        """Adjust for the item at ``position`` having been removed from the list.

        The removed position leaves the selection and later positions move up
        by one so they keep referring to the same items. Must be called after
        the list itself has shrunk.
        """
        state = self._state
        if state is None:
            return
        if isinstance(state, RangeSelection):
            lo, hi = state.bounds
            if position > hi:
                return
            if position < lo:
                lo, hi = lo - 1, hi - 1
            elif lo == hi:
                self._set(None)
                return
            else:
                hi -= 1
            if state.root_index <= state.extend_to_index:
                self._set(RangeSelection(lo, hi))
            else:
                self._set(RangeSelection(hi, lo))
            return
        if isinstance(state, DiscreteSelection):
            indices = {i if i < position else i - 1 for i in state.indices if i != position}
            last = state.last_toggled_index
            if last > position:
                last -= 1
            elif last == position:
                last = max(0, min(position, self._length() - 1))
            self._set(_discrete(indices, last))
            return
        raise TypeError(f"unknown selection state {state!r}")

    def remap_positions(self, mapping: Dict[int, int]) -> None:
        """Move selected positions to where their items now sit.

        ``mapping`` takes every selected old position to its new position;
        positions missing from it are dropped. A range whose items are still
        adjacent and in order stays a range.
        """
        state = self._state
        if state is None:
            return
        if isinstance(state, RangeSelection):
            moved = [mapping[i] for i in state.positions() if i in mapping]
            if not moved:
                self._set(None)
                return
            if moved == list(range(moved[0], moved[0] + len(moved))):
                lo, hi = moved[0], moved[-1]
                if state.root_index <= state.extend_to_index:
                    self._set(RangeSelection(lo, hi))
                else:
                    self._set(RangeSelection(hi, lo))
                return
            last = mapping.get(state.extend_to_index, moved[-1])
            self._set(_discrete(set(moved), last))
            return
        if isinstance(state, DiscreteSelection):
            moved_set = {mapping[i] for i in state.indices if i in mapping}
            last = mapping.get(state.last_toggled_index)
            if last is None:
                last = max(0, min(state.last_toggled_index, self._length() - 1))
            self._set(_discrete(moved_set, last))
            return
        raise TypeError(f"unknown selection state {state!r}")

    # -- internals -------------------------------------------------------

    def _check(self, position: int) -> None:
        length = self._length()
        if not 0 <= position < length:
            raise SelectionError(f"position {position} is outside the list (length {length})")

    def _set(self, state: SelectionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.debug("selection -> %r", state)
        for listener in list(self._listeners):
            listener(state)
