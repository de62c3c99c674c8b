"""Reactive state store: canonical state, derived task view, undo/redo.

All reads return copies or immutable values; all writes go through
:meth:`StateStore.set_state` or the board helpers built on it. One write is
atomic from the outside: merge, ``tasks`` recomputation, history push and
subscriber notification all finish before the call returns.

Writes issued from inside a subscriber (or event listener) while another
write is being dispatched are queued and run, in order, once the outer
write completes. Each queued write records its own history entry.

Bad input never raises: it is logged and ignored.
"""

from __future__ import annotations

from collections import deque
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from loguru import logger

from ..errors import ValidationError
from ..events import EventBus
from ..models import Board, Task
from .history import DEFAULT_MAX_HISTORY_SIZE, HistoryManager, StateSnapshot
from .subscriptions import FieldCallback, SubscriptionRegistry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_FILTER = "all"

# Bookkeeping keys live outside the snapshot-able values.
HISTORY_KEYS = ("history", "history_index", "max_history_size")
RESERVED_KEYS = frozenset(("tasks",) + HISTORY_KEYS)

_MISSING = object()


def _initial_values() -> dict[str, Any]:
    return {
        "boards": (),
        "current_board_id": None,
        "tasks": (),
        "filter": DEFAULT_FILTER,
    }


def _differs(old: Any, new: Any) -> bool:
    if old is new:
        return False
    if old is _MISSING or new is _MISSING:
        return True
    try:
        return bool(old != new)
    except Exception:
        return True


def _public(value: Any) -> Any:
    return None if value is _MISSING else value


# ---------------------------------------------------------------------------
# Derived view
# ---------------------------------------------------------------------------

def derive_tasks(boards: Iterable[Board], current_board_id: Optional[str]) -> tuple[Task, ...]:
    """Return the task list of the selected board, or ``()``."""
    if current_board_id is None:
        return ()
    for board in boards:
        if board.id == current_board_id:
            return tuple(board.tasks)
    return ()


def _normalize_boards(value: Any) -> tuple[Board, ...]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise ValidationError("boards must be a sequence of boards")
    return tuple(Board.from_dict(b) for b in value)


def _board_errors(boards: tuple[Board, ...]) -> Optional[str]:
    seen: set[str] = set()
    defaults = 0
    for board in boards:
        if board.id in seen:
            return f"duplicate board id {board.id!r}"
        seen.add(board.id)
        if board.is_default:
            defaults += 1
    if defaults > 1:
        return "more than one default board"
    return None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class StateStore:
    """Single owner of the application state.

    Parameters
    ----------
    bus:
        Notification bus for coarse-grained events. A private bus is
        created when omitted.
    max_history_size:
        Capacity of the undo/redo history.
    """

    def __init__(self, bus: Optional[EventBus] = None, max_history_size: int = DEFAULT_MAX_HISTORY_SIZE) -> None:
        self.bus = bus if bus is not None else EventBus()
        self._values: dict[str, Any] = _initial_values()
        self._history = HistoryManager(max_history_size)
        self._subscriptions = SubscriptionRegistry()
        self._pending: deque[Callable[[], Any]] = deque()
        self._dispatching = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        if key == "history":
            return self._history.entries
        if key == "history_index":
            return self._history.index
        if key == "max_history_size":
            return self._history.max_size
        try:
            return self._values.get(key, default)
        except TypeError:
            logger.warning("get ignored: unhashable key {!r}", key)
            return default

    def get_state(self) -> dict[str, Any]:
        """Return a shallow copy of the full state."""
        state = dict(self._values)
        state["history"] = self._history.entries
        state["history_index"] = self._history.index
        state["max_history_size"] = self._history.max_size
        return state

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, key: str, callback: FieldCallback) -> Callable[[], None]:
        """Call ``callback(new, old)`` whenever *key* changes.

        Returns a function that removes exactly this registration.
        """
        handle = self._subscriptions.register(key, callback)

        def _unsubscribe() -> None:
            self._subscriptions.unregister(handle)

        return _unsubscribe

    def subscriber_count(self, key: Optional[str] = None) -> int:
        return self._subscriptions.count(key)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_state(
        self,
        partial: Mapping[str, Any],
        *,
        add_to_history: bool = True,
        silent: bool = False,
    ) -> None:
        """Merge *partial* into the state.

        ``tasks`` and the history keys cannot be written. With
        ``add_to_history=False`` (e.g. loading from storage) no snapshot is
        recorded; with ``silent=True`` subscribers are not called.
        """
        if not isinstance(partial, Mapping):
            logger.warning("set_state ignored: expected a mapping, got {}", type(partial).__name__)
            return
        updates = dict(partial)
        self._dispatch(lambda: self._apply(updates, add_to_history=add_to_history, silent=silent))

    def undo(self) -> bool:
        """Step back one snapshot. ``False`` at the oldest entry."""
        return self._time_travel("undo")

    def redo(self) -> bool:
        """Step forward one snapshot. ``False`` at the newest entry."""
        return self._time_travel("redo")

    def reset(self) -> None:
        """Back to the freshly constructed state; drops history and subscribers."""
        self._dispatch(self._reset_now)

    # ------------------------------------------------------------------
    # Board lifecycle
    # ------------------------------------------------------------------

    def add_board(self, board: Union[Board, Mapping[str, Any]], *, make_current: bool = False) -> Optional[Board]:
        """Append *board*; optionally select it in the same step."""
        try:
            new_board = Board.from_dict(board)
        except (ValidationError, TypeError) as exc:
            logger.warning("add_board ignored: invalid board ({})", exc)
            return None

        def _op() -> Optional[Board]:
            boards: tuple[Board, ...] = self._values["boards"]
            if any(b.id == new_board.id for b in boards):
                logger.warning("add_board ignored: board id {} already exists", new_board.id)
                return None
            stored = new_board
            if stored.is_default and any(b.is_default for b in boards):
                logger.warning("add_board: {} demoted, a default board already exists", stored.id)
                stored = replace(stored, is_default=False)
            updates: dict[str, Any] = {"boards": boards + (stored,)}
            if make_current:
                updates["current_board_id"] = stored.id
            if self._apply(updates) is None:
                return None
            logger.debug("Added board {} ({})", stored.id, stored.name)
            self.bus.emit("board:added", {"board": stored})
            return stored

        return self._dispatch(_op)

    def update_board(self, board_id: str, patch: Mapping[str, Any]) -> Optional[Board]:
        """Replace the board with ``existing.update(**patch)``.

        Unknown ids and invalid patches are logged and ignored.
        """
        if not isinstance(patch, Mapping):
            logger.warning("update_board ignored: patch for {} is not a mapping", board_id)
            return None
        changes = dict(patch)
        if "id" in changes:
            if changes["id"] != board_id:
                logger.warning("update_board ignored: board ids cannot be changed ({})", board_id)
                return None
            del changes["id"]

        def _op() -> Optional[Board]:
            boards: tuple[Board, ...] = self._values["boards"]
            index = next((i for i, b in enumerate(boards) if b.id == board_id), None)
            if index is None:
                logger.warning("update_board ignored: unknown board id {}", board_id)
                return None
            previous = boards[index]
            try:
                updated = previous.update(**changes)
            except (ValidationError, TypeError) as exc:
                logger.warning("update_board ignored for {}: {}", board_id, exc)
                return None
            new_boards = list(boards)
            new_boards[index] = updated
            if updated.is_default and not previous.is_default:
                for i, other in enumerate(new_boards):
                    if i != index and other.is_default:
                        new_boards[i] = other.update(is_default=False)
            if self._apply({"boards": tuple(new_boards)}) is None:
                return None
            self.bus.emit("board:updated", {"board": updated, "previous": previous, "changes": changes})
            return updated

        return self._dispatch(_op)

    def remove_board(self, board_id: str, *, force: bool = False) -> bool:
        """Remove a board, moving the selection to the first remaining one.

        The default board is kept unless ``force`` is set.
        """

        def _op() -> bool:
            boards: tuple[Board, ...] = self._values["boards"]
            target = next((b for b in boards if b.id == board_id), None)
            if target is None:
                logger.warning("remove_board ignored: unknown board id {}", board_id)
                return False
            if target.is_default and not force:
                logger.warning("remove_board ignored: {} is the default board", board_id)
                return False
            remaining = tuple(b for b in boards if b.id != board_id)
            updates: dict[str, Any] = {"boards": remaining}
            if self._values["current_board_id"] == board_id:
                updates["current_board_id"] = remaining[0].id if remaining else None
            if self._apply(updates) is None:
                return False
            logger.debug("Removed board {}", board_id)
            self.bus.emit(
                "board:removed",
                {"board": target, "current_board_id": self._values["current_board_id"]},
            )
            return True

        return bool(self._dispatch(_op))

    def set_current_board(self, board_id: Optional[str]) -> bool:
        """Select a board (``None`` deselects). Unknown ids are ignored."""

        def _op() -> bool:
            if board_id is not None and self.get_board(board_id) is None:
                logger.warning("set_current_board ignored: unknown board id {}", board_id)
                return False
            return self._apply({"current_board_id": board_id}) is not None

        return bool(self._dispatch(_op))

    def get_board(self, board_id: Optional[str]) -> Optional[Board]:
        if board_id is None:
            return None
        for board in self._values["boards"]:
            if board.id == board_id:
                return board
        return None

    def get_current_board(self) -> Optional[Board]:
        return self.get_board(self._values["current_board_id"])

    def get_active_boards(self) -> list[Board]:
        return [b for b in self._values["boards"] if not b.is_archived]

    def get_archived_boards(self) -> list[Board]:
        return [b for b in self._values["boards"] if b.is_archived]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dispatch(self, op: Callable[[], Any]) -> Any:
        """Run *op* now, or queue it behind the write in progress.

        Queued operations return ``None`` to their caller.
        """
        if self._dispatching:
            self._pending.append(op)
            return None
        self._dispatching = True
        try:
            result = self._run(op)
            while self._pending:
                self._run(self._pending.popleft())
            return result
        finally:
            self._dispatching = False

    @staticmethod
    def _run(op: Callable[[], Any]) -> Any:
        try:
            return op()
        except Exception:
            logger.exception("State operation failed; state left as of the last completed step")
            return None

    def _apply(
        self,
        updates: dict[str, Any],
        *,
        add_to_history: bool = True,
        silent: bool = False,
    ) -> Optional[dict[str, tuple[Any, Any]]]:
        """Merge, derive, record and notify. ``None`` means rejected."""
        for key in [k for k in updates if k in RESERVED_KEYS]:
            logger.warning("set_state: '{}' cannot be set directly; ignored", key)
            del updates[key]

        candidate = dict(self._values)
        candidate.update(updates)

        if "boards" in updates:
            try:
                candidate["boards"] = _normalize_boards(updates["boards"])
            except (ValidationError, TypeError) as exc:
                logger.warning("set_state rejected: invalid boards ({})", exc)
                return None
            problem = _board_errors(candidate["boards"])
            if problem:
                logger.warning("set_state rejected: {}", problem)
                return None

        order = list(updates)
        current = candidate.get("current_board_id")
        if current is not None and not any(b.id == current for b in candidate["boards"]):
            if "current_board_id" in updates:
                logger.warning("set_state rejected: unknown current_board_id {}", current)
                return None
            # The selected board was dropped from ``boards``.
            boards = candidate["boards"]
            candidate["current_board_id"] = boards[0].id if boards else None
            order.append("current_board_id")

        if "boards" in updates or "current_board_id" in order:
            candidate["tasks"] = derive_tasks(candidate["boards"], candidate["current_board_id"])
            order.append("tasks")

        changes: dict[str, tuple[Any, Any]] = {}
        for key in order:
            old = self._values.get(key, _MISSING)
            new = candidate.get(key, _MISSING)
            if key not in changes and _differs(old, new):
                changes[key] = (_public(old), _public(new))

        if not changes:
            return changes

        self._values = candidate
        if add_to_history:
            self._history.push(StateSnapshot(self._values))
        if not silent:
            self._notify(changes)
        return changes

    def _notify(self, changes: dict[str, tuple[Any, Any]]) -> None:
        for key, (old, new) in changes.items():
            self._subscriptions.notify(key, new, old)
        self.bus.emit("state:changed", {key: new for key, (_, new) in changes.items()})

    def _time_travel(self, direction: str) -> bool:
        check = self._history.can_undo if direction == "undo" else self._history.can_redo
        if self._dispatching:
            # Queued behind the write in progress; bounds are re-checked when it runs.
            possible = check()
            if possible:
                self._pending.append(lambda: self._restore(direction))
            return possible
        return bool(self._dispatch(lambda: self._restore(direction)))

    def _restore(self, direction: str) -> bool:
        snapshot = self._history.undo() if direction == "undo" else self._history.redo()
        if snapshot is None:
            return False
        previous = self._values
        restored = snapshot.to_dict()
        restored.setdefault("boards", ())
        restored.setdefault("current_board_id", None)
        restored["tasks"] = derive_tasks(restored["boards"], restored["current_board_id"])
        self._values = restored

        changes: dict[str, tuple[Any, Any]] = {}
        for key in list(previous) + [k for k in restored if k not in previous]:
            old = previous.get(key, _MISSING)
            new = restored.get(key, _MISSING)
            if _differs(old, new):
                changes[key] = (_public(old), _public(new))

        logger.debug("{} -> history index {}", direction, self._history.index)
        for key, (old, new) in changes.items():
            self._subscriptions.notify(key, new, old)
        self.bus.emit(f"state:{direction}", {"history_index": self._history.index, "changed": list(changes)})
        if changes:
            self.bus.emit("state:changed", {key: new for key, (_, new) in changes.items()})
        return True

    def _reset_now(self) -> None:
        self._values = _initial_values()
        self._history.clear()
        self._subscriptions.clear()
        logger.debug("State reset")
        self.bus.emit("state:reset", None)
