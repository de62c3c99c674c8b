"""Task workflows: create, edit, move, archive and restore tasks on boards.

Each successful operation is a single undoable store update. Failures raise
and are published as ``task:error``.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional, Union

from loguru import logger

from ..errors import CascadeError, ConflictError, NotFoundError, ValidationError
from ..events import EventBus
from ..models import MAX_TASK_TEXT_LENGTH, Board, Task, TaskStatus
from ..state import StateStore
from ..utils import _parse_iso

# Short texts ("a", "fix") may legitimately repeat.
DUPLICATE_CHECK_MIN_LENGTH = 3

_UPDATABLE_FIELDS = frozenset({"text", "status"})


def _clean_text(text: Any) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Task text is required")
    cleaned = text.strip()
    if len(cleaned) > MAX_TASK_TEXT_LENGTH:
        raise ValidationError(f"Task text cannot exceed {MAX_TASK_TEXT_LENGTH} characters")
    return cleaned


def _completed_before(task: Task, cutoff: datetime) -> bool:
    if task.status != TaskStatus.DONE:
        return False
    completed = _parse_iso(task.completed_date)
    return completed is not None and completed < cutoff


class TaskService:
    """Validated task operations over a :class:`StateStore`."""

    def __init__(self, store: StateStore, bus: Optional[EventBus] = None) -> None:
        self.store = store
        self.bus = bus if bus is not None else store.bus

    # -- helpers ------------------------------------------------------------

    @contextmanager
    def _reporting(self, operation: str) -> Iterator[None]:
        try:
            yield
        except CascadeError as exc:
            logger.error("Task operation '{}' failed: {}", operation, exc)
            self.bus.emit("task:error", {"operation": operation, "error": str(exc)})
            raise

    def _resolve_board(self, board_id: Optional[str]) -> Board:
        board_id = board_id or self.store.get("current_board_id")
        if board_id is None:
            raise ValidationError("No board selected")
        board = self.store.get_board(board_id)
        if board is None:
            raise NotFoundError(f"Board not found: {board_id}")
        return board

    def _require_task(self, task_id: str) -> tuple[Board, Task]:
        found = self.find_task(task_id)
        if found is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return found

    def _commit(self, board: Board, **changes: Any) -> None:
        self.store.update_board(board.id, changes)

    # -- queries ------------------------------------------------------------

    def find_task(self, task_id: str) -> Optional[tuple[Board, Task]]:
        for board in self.store.get("boards"):
            task = board.get_task(task_id)
            if task is not None:
                return board, task
        return None

    def find_archived_task(self, task_id: str, board_id: Optional[str] = None) -> Optional[tuple[Board, Task]]:
        for board in self.store.get("boards"):
            if board_id is not None and board.id != board_id:
                continue
            task = board.get_archived_task(task_id)
            if task is not None:
                return board, task
        return None

    def get_tasks_by_status(self, status: Union[TaskStatus, str], board_id: Optional[str] = None) -> list[Task]:
        return list(self._resolve_board(board_id).tasks_by_status(status))

    def search_tasks(self, term: str, board_id: Optional[str] = None) -> list[Task]:
        """Case-insensitive text search; all active boards when *board_id* is omitted."""
        needle = (term or "").strip().lower()
        if not needle:
            return []
        boards = [self._resolve_board(board_id)] if board_id else self.store.get_active_boards()
        return [t for board in boards for t in board.tasks if needle in t.text.lower()]

    # -- commands -----------------------------------------------------------

    def create_task(self, text: str, board_id: Optional[str] = None) -> Task:
        """Append a ``todo`` task to *board_id* (default: the current board)."""
        with self._reporting("create"):
            board = self._resolve_board(board_id)
            clean = _clean_text(text)
            if len(clean) > DUPLICATE_CHECK_MIN_LENGTH and any(
                t.text.lower() == clean.lower() for t in board.tasks
            ):
                raise ConflictError(f"A task with text '{clean}' already exists on this board")
            task = Task(text=clean)
            self._commit(board, tasks=board.tasks + (task,))
            logger.debug("Created task {} on board {}", task.id, board.id)
            self.bus.emit("task:created", {"task": task, "board_id": board.id})
            return task

    def update_task(self, task_id: str, **changes: Any) -> Task:
        with self._reporting("update"):
            board, task = self._require_task(task_id)
            unknown = set(changes) - _UPDATABLE_FIELDS
            if unknown:
                raise ValidationError(f"Cannot update task field(s): {', '.join(sorted(unknown))}")
            updated = task
            if "status" in changes:
                updated = updated.move_to(changes["status"])
            if "text" in changes:
                clean = _clean_text(changes["text"])
                if any(t.id != task_id and t.text == clean for t in board.tasks):
                    raise ConflictError(f"A task with text '{clean}' already exists on this board")
                updated = updated.update(text=clean)
            if updated is task:
                return task
            self._commit(board, tasks=board.replace_task(updated).tasks)
            self.bus.emit("task:updated", {"task": updated, "previous": task, "board_id": board.id})
            return updated

    def move_task_to_status(self, task_id: str, status: Union[TaskStatus, str]) -> Task:
        with self._reporting("move"):
            TaskStatus.parse(status)
        return self.update_task(task_id, status=status)

    def delete_task(self, task_id: str) -> Task:
        with self._reporting("delete"):
            board, task = self._require_task(task_id)
            self._commit(board, tasks=board.remove_task(task_id).tasks)
            self.bus.emit("task:deleted", {"task": task, "board_id": board.id})
            return task

    def archive_task(self, task_id: str) -> Task:
        with self._reporting("archive"):
            board, task = self._require_task(task_id)
            archived = task.archive()
            self._commit(
                board,
                tasks=tuple(t for t in board.tasks if t.id != task_id),
                archived_tasks=board.archived_tasks + (archived,),
            )
            self.bus.emit("task:archived", {"task": archived, "board_id": board.id})
            return archived

    def restore_task(self, task_id: str, board_id: Optional[str] = None) -> Task:
        with self._reporting("restore"):
            found = self.find_archived_task(task_id, board_id)
            if found is None:
                raise NotFoundError(f"Archived task not found: {task_id}")
            board, task = found
            restored = task.restore()
            self._commit(
                board,
                tasks=board.tasks + (restored,),
                archived_tasks=tuple(t for t in board.archived_tasks if t.id != task_id),
            )
            self.bus.emit("task:restored", {"task": restored, "board_id": board.id})
            return restored

    def archive_completed_tasks(self, board_id: Optional[str] = None) -> int:
        """Archive every ``done`` task of a board in one step."""
        with self._reporting("archive_completed"):
            board = self._resolve_board(board_id)
            done = board.tasks_by_status(TaskStatus.DONE)
            if not done:
                return 0
            archived = tuple(t.archive() for t in done)
            self._commit(
                board,
                tasks=tuple(t for t in board.tasks if t.status != TaskStatus.DONE),
                archived_tasks=board.archived_tasks + archived,
            )
            for task in archived:
                self.bus.emit("task:archived", {"task": task, "board_id": board.id})
            return len(archived)

    def auto_archive(self, days: int, now: Optional[datetime] = None) -> int:
        """Archive ``done`` tasks completed more than *days* ago, on every board."""
        if days < 1:
            raise ValidationError("days must be at least 1")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        count = 0
        boards: list[Board] = []
        events: list[tuple[Task, str]] = []
        for board in self.store.get("boards"):
            stale = [t for t in board.tasks if _completed_before(t, cutoff)]
            if not stale:
                boards.append(board)
                continue
            stale_ids = {t.id for t in stale}
            archived = tuple(t.archive() for t in stale)
            boards.append(
                board.update(
                    tasks=tuple(t for t in board.tasks if t.id not in stale_ids),
                    archived_tasks=board.archived_tasks + archived,
                )
            )
            events.extend((t, board.id) for t in archived)
            count += len(archived)
        if count:
            self.store.set_state({"boards": tuple(boards)})
            logger.info("Auto-archived {} task(s) completed more than {} day(s) ago", count, days)
            for task, owner in events:
                self.bus.emit("task:archived", {"task": task, "board_id": owner, "auto": True})
        return count

    def clear_archived_tasks(self, board_id: Optional[str] = None) -> int:
        with self._reporting("clear_archived"):
            board = self._resolve_board(board_id)
            count = len(board.archived_tasks)
            if count:
                self._commit(board, archived_tasks=())
            return count
