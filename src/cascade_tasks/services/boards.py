"""Board workflows: create, rename, switch, duplicate, archive, delete.

Unlike :class:`~cascade_tasks.state.StateStore`, these operations validate up
front and raise :class:`~cascade_tasks.errors.CascadeError` subclasses. Each
failure is also logged and published as ``board:error``.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Iterator, Optional

from loguru import logger

from ..errors import CascadeError, ConflictError, NotFoundError, ValidationError
from ..events import EventBus
from ..models import (
    DEFAULT_BOARD_COLOR,
    MAX_BOARD_DESCRIPTION_LENGTH,
    MAX_BOARD_NAME_LENGTH,
    Board,
    TaskStatus,
)
from ..state import StateStore

DEFAULT_BOARD_NAME = "My Tasks"

_UPDATABLE_FIELDS = frozenset({"name", "description", "color", "is_default"})


@dataclass(frozen=True)
class BoardStatistics:
    """Task counts for one board."""

    board_id: str
    name: str
    total: int
    todo: int
    doing: int
    done: int
    archived: int
    completion_rate: int
    created_date: str
    last_modified: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Board name is required")
    cleaned = name.strip()
    if len(cleaned) > MAX_BOARD_NAME_LENGTH:
        raise ValidationError(f"Board name cannot exceed {MAX_BOARD_NAME_LENGTH} characters")
    return cleaned


def _clean_description(description: Any) -> str:
    if description is None:
        return ""
    if not isinstance(description, str):
        raise ValidationError("Board description must be a string")
    cleaned = description.strip()
    if len(cleaned) > MAX_BOARD_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Board description cannot exceed {MAX_BOARD_DESCRIPTION_LENGTH} characters"
        )
    return cleaned


def generate_unique_board_name(base_name: str, boards: Iterable[Board] = ()) -> str:
    """Return *base_name*, or ``"<base> 2"``, ``"<base> 3"``... if taken."""
    taken = {b.name.lower() for b in boards}
    base = base_name.strip()[:MAX_BOARD_NAME_LENGTH]
    candidate = base
    counter = 2
    while candidate.lower() in taken:
        suffix = f" {counter}"
        candidate = base[: MAX_BOARD_NAME_LENGTH - len(suffix)].rstrip() + suffix
        counter += 1
    return candidate


class BoardService:
    """Validated board operations over a :class:`StateStore`."""

    def __init__(self, store: StateStore, bus: Optional[EventBus] = None) -> None:
        self.store = store
        self.bus = bus if bus is not None else store.bus

    # -- helpers ------------------------------------------------------------

    @contextmanager
    def _reporting(self, operation: str) -> Iterator[None]:
        try:
            yield
        except CascadeError as exc:
            logger.error("Board operation '{}' failed: {}", operation, exc)
            self.bus.emit("board:error", {"operation": operation, "error": str(exc)})
            raise

    def _require(self, board_id: str) -> Board:
        board = self.store.get_board(board_id)
        if board is None:
            raise NotFoundError(f"Board not found: {board_id}")
        return board

    def _ensure_name_free(self, name: str, exclude_id: Optional[str] = None) -> None:
        for board in self.store.get("boards"):
            if board.id != exclude_id and board.name.lower() == name.lower():
                raise ConflictError(f"A board named '{name}' already exists")

    def _emit_switch(self, previous_id: Optional[str]) -> None:
        current_id = self.store.get("current_board_id")
        if current_id != previous_id:
            self.bus.emit(
                "board:switched",
                {"board_id": current_id, "previous_board_id": previous_id},
            )

    # -- queries ------------------------------------------------------------

    def get_all_boards(self) -> list[Board]:
        return list(self.store.get("boards"))

    def get_active_boards(self) -> list[Board]:
        return self.store.get_active_boards()

    def get_archived_boards(self) -> list[Board]:
        return self.store.get_archived_boards()

    def get_current_board(self) -> Optional[Board]:
        return self.store.get_current_board()

    def get_board_statistics(self, board_id: str) -> Optional[BoardStatistics]:
        board = self.store.get_board(board_id)
        if board is None:
            return None
        total = len(board.tasks)
        done = len(board.tasks_by_status(TaskStatus.DONE))
        return BoardStatistics(
            board_id=board.id,
            name=board.name,
            total=total,
            todo=len(board.tasks_by_status(TaskStatus.TODO)),
            doing=len(board.tasks_by_status(TaskStatus.DOING)),
            done=done,
            archived=len(board.archived_tasks),
            completion_rate=round(done / total * 100) if total else 0,
            created_date=board.created_date,
            last_modified=board.last_modified,
        )

    def generate_unique_board_name(self, base_name: str, boards: Optional[Iterable[Board]] = None) -> str:
        return generate_unique_board_name(base_name, self.store.get("boards") if boards is None else boards)

    # -- commands -----------------------------------------------------------

    def create_board(
        self,
        name: str,
        description: str = "",
        color: str = DEFAULT_BOARD_COLOR,
    ) -> Board:
        """Create a board and select it. The first board becomes the default."""
        with self._reporting("create"):
            clean = _clean_name(name)
            self._ensure_name_free(clean)
            board = Board(
                name=clean,
                description=_clean_description(description),
                color=color or DEFAULT_BOARD_COLOR,
                is_default=not self.store.get("boards"),
            )
            previous_id = self.store.get("current_board_id")
            stored = self.store.add_board(board, make_current=True) or board
            logger.info("Created board '{}' ({})", stored.name, stored.id)
            self.bus.emit("board:created", {"board": stored})
            self._emit_switch(previous_id)
            return stored

    def create_default_board(self, name: str = DEFAULT_BOARD_NAME) -> Board:
        """Return the default (or first) board, creating one when there are none."""
        boards = self.store.get("boards")
        for board in boards:
            if board.is_default:
                return board
        if boards:
            return boards[0]
        return self.create_board(name, description="Default board for your tasks")

    def update_board(self, board_id: str, **changes: Any) -> Board:
        with self._reporting("update"):
            board = self._require(board_id)
            unknown = set(changes) - _UPDATABLE_FIELDS
            if unknown:
                raise ValidationError(f"Cannot update board field(s): {', '.join(sorted(unknown))}")
            if "name" in changes:
                changes["name"] = _clean_name(changes["name"])
                self._ensure_name_free(changes["name"], exclude_id=board_id)
            if "description" in changes:
                changes["description"] = _clean_description(changes["description"])
            # Raises ValidationError for a bad colour or flag.
            updated = board.update(**changes)
            return self.store.update_board(board_id, changes) or updated

    def delete_board(self, board_id: str) -> Board:
        with self._reporting("delete"):
            board = self._require(board_id)
            if board.is_default:
                raise ConflictError("Cannot delete the default board")
            if len(self.store.get("boards")) <= 1:
                raise ConflictError("Cannot delete the only board")
            previous_id = self.store.get("current_board_id")
            self.store.remove_board(board_id)
            logger.info("Deleted board '{}' ({})", board.name, board.id)
            self.bus.emit("board:deleted", {"board": board})
            self._emit_switch(previous_id)
            return board

    def switch_to_board(self, board_id: str) -> Board:
        with self._reporting("switch"):
            board = self._require(board_id)
            previous_id = self.store.get("current_board_id")
            if previous_id == board_id:
                return board
            self.store.set_current_board(board_id)
            self._emit_switch(previous_id)
            return board

    def duplicate_board(self, board_id: str, new_name: Optional[str] = None) -> Board:
        """Copy a board and its active tasks under new ids."""
        with self._reporting("duplicate"):
            source = self._require(board_id)
            if new_name is not None and new_name.strip():
                name = _clean_name(new_name)
                self._ensure_name_free(name)
            else:
                name = self.generate_unique_board_name(f"{source.name} (Copy)")
            copy = source.duplicate(name)
            stored = self.store.add_board(copy) or copy
            logger.info("Duplicated board {} as '{}'", board_id, stored.name)
            self.bus.emit("board:created", {"board": stored, "source_id": board_id})
            return stored

    def archive_board(self, board_id: str) -> Board:
        """Archive a board; the selection moves to another active board."""
        with self._reporting("archive"):
            board = self._require(board_id)
            if board.is_default:
                raise ConflictError("Cannot archive the default board")
            if board.is_archived:
                return board
            archived = board.archive()
            boards = tuple(archived if b.id == board_id else b for b in self.store.get("boards"))
            previous_id = self.store.get("current_board_id")
            updates: dict[str, Any] = {"boards": boards}
            if previous_id == board_id:
                fallback = next((b for b in boards if not b.is_archived), None)
                updates["current_board_id"] = fallback.id if fallback else None
            self.store.set_state(updates)
            logger.info("Archived board '{}' ({})", board.name, board_id)
            self.bus.emit("board:archived", {"board": archived})
            self._emit_switch(previous_id)
            return archived

    def unarchive_board(self, board_id: str) -> Board:
        with self._reporting("unarchive"):
            board = self._require(board_id)
            if not board.is_archived:
                return board
            restored = self.store.update_board(board_id, {"is_archived": False, "archived_date": None})
            restored = restored or board.unarchive()
            self.bus.emit("board:unarchived", {"board": restored})
            return restored
