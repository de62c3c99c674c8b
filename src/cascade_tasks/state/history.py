"""Linear, bounded undo/redo history.

The manager holds snapshots of the store state and a pointer to the
snapshot that matches the live state. Writing while the pointer is not at
the tip discards the redo branch; there is no branching history.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Iterator, Optional

DEFAULT_MAX_HISTORY_SIZE = 50


class StateSnapshot(Mapping):
    """Read-only copy of the state at one point on the timeline.

    Values are the store's own immutable values (tuples of frozen
    dataclasses, strings), so a shallow copy cannot alias live state.
    """

    __slots__ = ("_data",)

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._data = MappingProxyType(dict(values))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"StateSnapshot({dict(self._data)!r})"

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


class HistoryManager:
    """Snapshot stack with a current-position pointer.

    ``index`` is ``-1`` while empty and otherwise points at the snapshot
    matching the live state.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_HISTORY_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: list[StateSnapshot] = []
        self._index = -1

    # -- inspection ---------------------------------------------------------

    @property
    def index(self) -> int:
        return self._index

    @property
    def entries(self) -> tuple[StateSnapshot, ...]:
        return tuple(self._entries)

    @property
    def current(self) -> Optional[StateSnapshot]:
        if self._index < 0:
            return None
        return self._entries[self._index]

    @property
    def at_tip(self) -> bool:
        return self._index == len(self._entries) - 1

    def __len__(self) -> int:
        return len(self._entries)

    def can_undo(self) -> bool:
        return self._index > 0

    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    # -- transitions --------------------------------------------------------

    def push(self, snapshot: StateSnapshot) -> None:
        """Record *snapshot* as the new tip.

        Mid-history, everything after the pointer is dropped first. At
        capacity the oldest entry is evicted and the pointer shifts down
        with it.
        """
        if not self.at_tip:
            del self._entries[self._index + 1:]
        self._entries.append(snapshot)
        self._index = len(self._entries) - 1
        while len(self._entries) > self.max_size:
            self._entries.pop(0)
            self._index -= 1

    def undo(self) -> Optional[StateSnapshot]:
        if not self.can_undo():
            return None
        self._index -= 1
        return self._entries[self._index]

    def redo(self) -> Optional[StateSnapshot]:
        if not self.can_redo():
            return None
        self._index += 1
        return self._entries[self._index]

    def clear(self) -> None:
        self._entries.clear()
        self._index = -1
