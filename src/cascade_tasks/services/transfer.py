"""Export boards to a portable document and merge imported data back in.

Three import shapes are accepted:

* ``{"boards": [...]}`` (current export format),
* ``{"data": {"boards": [...]}}`` (a storage envelope),
* a bare list of task mappings, imported into the current board.

The whole merge is applied as one undoable store update.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from loguru import logger

from ..errors import ImportFormatError, ValidationError
from ..events import EventBus
from ..io_utils import _atomic_write_json
from ..models import DEFAULT_BOARD_COLOR, MAX_BOARD_NAME_LENGTH, MAX_TASK_TEXT_LENGTH, Board, Task, TaskStatus
from ..state import StateStore
from ..utils import _now_iso
from .boards import BoardService, generate_unique_board_name

EXPORT_VERSION = "2.0.0"
APP_NAME = "Cascade Tasks"
CONFLICT_MODES = ("overwrite", "skip", "rename")


@dataclass
class ImportSummary:
    boards_imported: int = 0
    boards_skipped: int = 0
    tasks_imported: int = 0
    first_board_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _fresh_tasks(raw_tasks: Any) -> tuple[Task, ...]:
    """Rebuild imported tasks under new ids, keeping text and status."""
    if not isinstance(raw_tasks, (list, tuple)):
        return ()
    tasks: list[Task] = []
    for raw in raw_tasks:
        if not isinstance(raw, Mapping):
            continue
        text = raw.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        try:
            status = TaskStatus.parse(raw.get("status") or TaskStatus.TODO)
        except ValidationError:
            status = TaskStatus.TODO
        completed = raw.get("completed_date") or raw.get("completedDate")
        if status == TaskStatus.DONE:
            completed = completed if isinstance(completed, str) else _now_iso()
        else:
            completed = None
        tasks.append(Task(text=text.strip()[:MAX_TASK_TEXT_LENGTH], status=status, completed_date=completed))
    return tuple(tasks)


def _unique_text(text: str, taken: set[str]) -> str:
    if text not in taken:
        return text
    counter = 1
    while True:
        suffix = f" ({counter})"
        candidate = text[: MAX_TASK_TEXT_LENGTH - len(suffix)] + suffix
        if candidate not in taken:
            return candidate
        counter += 1


class DataTransfer:
    """Import/export over a :class:`StateStore`."""

    def __init__(self, store: StateStore, boards: BoardService, bus: Optional[EventBus] = None) -> None:
        self.store = store
        self.boards = boards
        self.bus = bus if bus is not None else store.bus

    # -- export -------------------------------------------------------------

    def export_data(self) -> dict[str, Any]:
        boards = self.store.get("boards")
        data = {
            "version": EXPORT_VERSION,
            "exportDate": _now_iso(),
            "appName": APP_NAME,
            "boards": [b.to_dict() for b in boards],
        }
        self.bus.emit("data:exported", {"boards": len(boards)})
        return data

    def export_to_file(self, path: Union[str, Path]) -> Path:
        target = Path(path)
        _atomic_write_json(target, self.export_data())
        logger.info("Exported {} board(s) to {}", len(self.store.get("boards")), target)
        return target

    # -- import -------------------------------------------------------------

    def import_data(self, payload: Any, on_conflict: str = "overwrite") -> ImportSummary:
        """Merge *payload* into the store.

        Boards whose name matches an existing board (case-insensitively) are
        overwritten, skipped or renamed according to *on_conflict*.
        """
        if on_conflict not in CONFLICT_MODES:
            raise ValidationError(f"on_conflict must be one of: {', '.join(CONFLICT_MODES)}")
        if isinstance(payload, list):
            summary = self._import_task_list(payload)
        elif isinstance(payload, Mapping):
            raw_boards = payload.get("boards")
            if raw_boards is None and isinstance(payload.get("data"), Mapping):
                raw_boards = payload["data"].get("boards")
            if not isinstance(raw_boards, list):
                raise ImportFormatError("Invalid import format: expected a 'boards' list")
            summary = self._import_boards(raw_boards, on_conflict)
        else:
            raise ImportFormatError("Invalid import format: expected an object or a list of tasks")
        logger.info(
            "Imported {} board(s), {} task(s); skipped {} board(s)",
            summary.boards_imported,
            summary.tasks_imported,
            summary.boards_skipped,
        )
        self.bus.emit("data:imported", summary.to_dict())
        return summary

    def import_from_file(
        self,
        path: Union[str, Path],
        on_conflict: str = "overwrite",
        max_size: Optional[int] = None,
    ) -> ImportSummary:
        source = Path(path)
        try:
            raw = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ImportFormatError(f"{source.name}: {exc.__class__.__name__}: {exc}") from exc
        if max_size is not None and len(raw) > max_size:
            raise ImportFormatError(f"{source.name} is larger than the {max_size} character import limit")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ImportFormatError(f"{source.name}: invalid JSON: {exc}") from exc
        return self.import_data(payload, on_conflict=on_conflict)

    def _import_boards(self, raw_boards: Iterable[Any], on_conflict: str) -> ImportSummary:
        summary = ImportSummary()
        boards = list(self.store.get("boards"))
        for raw in raw_boards:
            if not isinstance(raw, Mapping) or not isinstance(raw.get("name"), str) or not raw["name"].strip():
                logger.warning("Skipping imported board without a name")
                summary.boards_skipped += 1
                continue
            name = raw["name"].strip()[:MAX_BOARD_NAME_LENGTH]
            description = raw.get("description") if isinstance(raw.get("description"), str) else ""
            color = raw.get("color") or DEFAULT_BOARD_COLOR
            tasks = _fresh_tasks(raw.get("tasks"))
            index = next((i for i, b in enumerate(boards) if b.name.lower() == name.lower()), None)
            try:
                if index is not None and on_conflict == "skip":
                    summary.boards_skipped += 1
                    continue
                if index is not None and on_conflict == "overwrite":
                    board = boards[index].update(description=description, color=color, tasks=tasks)
                    boards[index] = board
                else:
                    if index is not None:
                        name = generate_unique_board_name(name, boards)
                    board = Board(name=name, description=description, color=color, tasks=tasks)
                    boards.append(board)
            except ValidationError as exc:
                logger.warning("Skipping imported board '{}': {}", name, exc)
                summary.boards_skipped += 1
                continue
            summary.boards_imported += 1
            summary.tasks_imported += len(tasks)
            if summary.first_board_id is None:
                summary.first_board_id = board.id

        if summary.boards_imported:
            if not any(b.is_default for b in boards):
                boards[0] = boards[0].update(is_default=True)
            self.store.set_state({"boards": tuple(boards), "current_board_id": summary.first_board_id})
        return summary

    def _import_task_list(self, items: list[Any]) -> ImportSummary:
        board = self.store.get_current_board()
        if board is None:
            board = self.boards.create_default_board()
        taken = {t.text for t in board.tasks}
        added: list[Task] = []
        for task in _fresh_tasks(items):
            text = _unique_text(task.text, taken)
            taken.add(text)
            added.append(task if text == task.text else task.update(text=text))
        summary = ImportSummary(tasks_imported=len(added), first_board_id=board.id)
        if added:
            self.store.update_board(board.id, {"tasks": board.tasks + tuple(added)})
        return summary
