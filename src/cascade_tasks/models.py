"""Immutable board and task value objects.

Every "mutation" here returns a new instance; nothing is changed in place.
That keeps history snapshots in the state store from aliasing live state.
The dataclasses serialize to snake_case dicts and accept the camelCase
keys written by the original browser app when reading.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from .errors import ValidationError
from .utils import _fresh_timestamp, _now_iso, generate_id


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_TASK_TEXT_LENGTH = 200
MAX_BOARD_NAME_LENGTH = 50
MAX_BOARD_DESCRIPTION_LENGTH = 200
DEFAULT_BOARD_COLOR = "#6750a4"

_HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")

# camelCase keys used by exports of the browser version.
_KEY_ALIASES = {
    "createdDate": "created_date",
    "lastModified": "last_modified",
    "completedDate": "completed_date",
    "archivedDate": "archived_date",
    "isDefault": "is_default",
    "isArchived": "is_archived",
    "archivedTasks": "archived_tasks",
}


class TaskStatus(str, Enum):
    """Kanban column a task sits in."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"

    @classmethod
    def parse(cls, raw: Any) -> "TaskStatus":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw))
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValidationError(f"Task status must be one of: {valid} (got {raw!r})") from None


def _normalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        out[_KEY_ALIASES.get(key, key)] = value
    return out


def _known(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Task:
    """A unit of work on a board."""

    id: str = field(default_factory=generate_id)
    text: str = ""
    status: TaskStatus = TaskStatus.TODO
    created_date: str = field(default_factory=_now_iso)
    last_modified: str = field(default_factory=_now_iso)
    completed_date: Optional[str] = None
    archived: bool = False
    archived_date: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", TaskStatus.parse(self.status))
        if not self.id or not isinstance(self.id, str):
            raise ValidationError("Task id must be a non-empty string")
        if not isinstance(self.text, str) or not self.text.strip():
            raise ValidationError("Task text is required")
        if len(self.text) > MAX_TASK_TEXT_LENGTH:
            raise ValidationError(f"Task text cannot exceed {MAX_TASK_TEXT_LENGTH} characters")
        if not isinstance(self.archived, bool):
            raise ValidationError("Task archived flag must be a boolean")

    # -- updates ------------------------------------------------------------

    def update(self, **changes: Any) -> "Task":
        """Return a copy with *changes* applied and a fresh ``last_modified``."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")
        changes["last_modified"] = _fresh_timestamp(self.last_modified)
        return replace(self, **changes)

    def move_to(self, status: Union[TaskStatus, str]) -> "Task":
        """Move to *status*, keeping ``completed_date`` in step with ``done``."""
        new_status = TaskStatus.parse(status)
        changes: dict[str, Any] = {"status": new_status}
        if new_status == TaskStatus.DONE and self.status != TaskStatus.DONE:
            changes["completed_date"] = _now_iso()
        elif new_status != TaskStatus.DONE and self.status == TaskStatus.DONE:
            changes["completed_date"] = None
        return self.update(**changes)

    def start(self) -> "Task":
        return self.move_to(TaskStatus.DOING)

    def complete(self) -> "Task":
        return self.move_to(TaskStatus.DONE)

    def reset(self) -> "Task":
        return self.move_to(TaskStatus.TODO)

    def archive(self) -> "Task":
        return self.update(archived=True, archived_date=_now_iso())

    def restore(self) -> "Task":
        return self.update(archived=False, archived_date=None)

    def clone(self) -> "Task":
        """Copy under a new id with fresh timestamps."""
        now = _now_iso()
        return replace(self, id=generate_id(), created_date=now, last_modified=now)

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "status": self.status.value,
            "created_date": self.created_date,
            "last_modified": self.last_modified,
            "completed_date": self.completed_date,
            "archived": self.archived,
            "archived_date": self.archived_date,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        if isinstance(data, Task):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("Task data is required")
        d = _known(cls, _normalize_keys(data))
        if not d.get("id"):
            d.pop("id", None)
        for key in ("created_date", "last_modified"):
            if not d.get(key):
                d.pop(key, None)
        if d.get("status") is None:
            d.pop("status", None)
        d["archived"] = bool(d.get("archived", False))
        return cls(**d)


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------

def _coerce_tasks(raw: Optional[Iterable[Any]], label: str) -> tuple[Task, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (str, bytes, Mapping)):
        raise ValidationError(f"Board {label} must be a sequence of tasks")
    tasks = tuple(Task.from_dict(t) for t in raw)
    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            raise ValidationError(f"Duplicate task id {task.id!r} in board {label}")
        seen.add(task.id)
    return tasks


@dataclass(frozen=True)
class Board:
    """A named collection of tasks."""

    id: str = field(default_factory=generate_id)
    name: str = ""
    description: str = ""
    color: str = DEFAULT_BOARD_COLOR
    is_default: bool = False
    is_archived: bool = False
    created_date: str = field(default_factory=_now_iso)
    last_modified: str = field(default_factory=_now_iso)
    archived_date: Optional[str] = None
    tasks: tuple[Task, ...] = ()
    archived_tasks: tuple[Task, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "tasks", _coerce_tasks(self.tasks, "tasks"))
        object.__setattr__(self, "archived_tasks", _coerce_tasks(self.archived_tasks, "archived tasks"))
        if self.description is None:
            object.__setattr__(self, "description", "")
        if not self.id or not isinstance(self.id, str):
            raise ValidationError("Board id must be a non-empty string")
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("Board name is required and must be a non-empty string")
        if len(self.name) > MAX_BOARD_NAME_LENGTH:
            raise ValidationError(f"Board name cannot exceed {MAX_BOARD_NAME_LENGTH} characters")
        if not isinstance(self.description, str) or len(self.description) > MAX_BOARD_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Board description cannot exceed {MAX_BOARD_DESCRIPTION_LENGTH} characters"
            )
        if not isinstance(self.color, str) or not _HEX_COLOR_RE.match(self.color):
            raise ValidationError("Board color must be a valid hex color")
        if not isinstance(self.is_archived, bool):
            raise ValidationError("is_archived must be a boolean")
        if not isinstance(self.is_default, bool):
            raise ValidationError("is_default must be a boolean")

    # -- updates ------------------------------------------------------------

    def update(self, **changes: Any) -> "Board":
        """Return a copy with *changes* applied and a fresh ``last_modified``."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValidationError(f"Unknown board field(s): {', '.join(sorted(unknown))}")
        changes["last_modified"] = _fresh_timestamp(self.last_modified)
        return replace(self, **changes)

    def archive(self) -> "Board":
        return self.update(is_archived=True, archived_date=_now_iso())

    def unarchive(self) -> "Board":
        return self.update(is_archived=False, archived_date=None)

    def add_task(self, task: Task) -> "Board":
        return self.update(tasks=self.tasks + (task,))

    def remove_task(self, task_id: str) -> "Board":
        return self.update(tasks=tuple(t for t in self.tasks if t.id != task_id))

    def replace_task(self, task: Task) -> "Board":
        return self.update(tasks=tuple(task if t.id == task.id else t for t in self.tasks))

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_archived_task(self, task_id: str) -> Optional[Task]:
        for task in self.archived_tasks:
            if task.id == task_id:
                return task
        return None

    def tasks_by_status(self, status: Union[TaskStatus, str]) -> tuple[Task, ...]:
        wanted = TaskStatus.parse(status)
        return tuple(t for t in self.tasks if t.status == wanted)

    def duplicate(self, new_name: Optional[str] = None) -> "Board":
        """Copy with new ids; archived tasks are not carried over."""
        now = _now_iso()
        return Board(
            name=new_name or f"{self.name} (Copy)",
            description=self.description,
            color=self.color,
            tasks=tuple(t.clone() for t in self.tasks),
            created_date=now,
            last_modified=now,
        )

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "is_default": self.is_default,
            "is_archived": self.is_archived,
            "created_date": self.created_date,
            "last_modified": self.last_modified,
            "archived_date": self.archived_date,
            "tasks": [t.to_dict() for t in self.tasks],
            "archived_tasks": [t.to_dict() for t in self.archived_tasks],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Board":
        if isinstance(data, Board):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("Board data is required")
        d = _known(cls, _normalize_keys(data))
        if not d.get("id"):
            d.pop("id", None)
        for key in ("created_date", "last_modified"):
            if not d.get(key):
                d.pop(key, None)
        if not d.get("color"):
            d.pop("color", None)
        for key in ("is_default", "is_archived"):
            if d.get(key) is None:
                d.pop(key, None)
        d["tasks"] = d.get("tasks") or ()
        d["archived_tasks"] = d.get("archived_tasks") or ()
        return cls(**d)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def create_task(text_or_data: Union[str, Mapping[str, Any]], **options: Any) -> Task:
    """Build a :class:`Task` from a text (plus keyword fields) or a mapping."""
    if isinstance(text_or_data, str):
        return Task.from_dict({"text": text_or_data, **options})
    return Task.from_dict({**dict(text_or_data), **options})


def create_board(name_or_data: Union[str, Mapping[str, Any]], **options: Any) -> Board:
    """Build a :class:`Board` from a name (plus keyword fields) or a mapping."""
    if isinstance(name_or_data, str):
        return Board.from_dict({"name": name_or_data, **options})
    return Board.from_dict({**dict(name_or_data), **options})
