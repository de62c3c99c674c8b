"""Versioned on-disk persistence for the store payload.

Files hold an envelope ``{"version", "timestamp", "data"}``. ``data`` is
``{"boards": [...], "current_board_id": ..., "filter": ...}``. Older
payloads (bare ``tasks``/``todos`` lists from single-board versions) are
migrated on load.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import yaml
from loguru import logger

from .errors import ValidationError
from .events import EventBus
from .io_utils import FileLock, _load_data_with_error, _lock_path, _save_data
from .models import Board, Task, TaskStatus
from .utils import _now_iso, format_bytes

STORAGE_VERSION = "1.0"
LEGACY_BOARD_NAME = "My Tasks"

Migration = Callable[[dict[str, Any]], dict[str, Any]]


def _legacy_task(raw: Any, from_todos: bool) -> Optional[Task]:
    if not isinstance(raw, Mapping):
        return None
    data = dict(raw)
    if from_todos:
        data["status"] = TaskStatus.DONE.value if data.pop("completed", False) else TaskStatus.TODO.value
    try:
        return Task.from_dict(data)
    except ValidationError as exc:
        logger.warning("Dropping legacy task during migration: {}", exc)
        return None


def migrate_legacy_data(data: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
    """Wrap a single-board payload into the multi-board shape.

    Returns ``(data, migrated)``.
    """
    if "boards" in data:
        return dict(data), False
    if isinstance(data.get("tasks"), list):
        raw_tasks, from_todos = data["tasks"], False
    elif isinstance(data.get("todos"), list):
        raw_tasks, from_todos = data["todos"], True
    else:
        return dict(data), False

    tasks: list[Task] = []
    seen: set[str] = set()
    for raw in raw_tasks:
        task = _legacy_task(raw, from_todos)
        if task is None or task.id in seen:
            continue
        seen.add(task.id)
        tasks.append(task)
    board = Board(
        name=LEGACY_BOARD_NAME,
        description="Migrated from a single-board save",
        is_default=True,
        tasks=tuple(tasks),
    )
    return {
        "boards": [board.to_dict()],
        "current_board_id": board.id,
        "filter": data.get("filter", "all"),
    }, True


class FileStorage:
    """JSON (or YAML, by suffix) file holding the persisted state.

    Failures never raise: they are logged, published as ``storage:error``
    and reported through the return value.
    """

    def __init__(self, path: Union[str, Path], bus: Optional[EventBus] = None) -> None:
        self.path = Path(path)
        self.bus = bus
        self._migrations: dict[str, Migration] = {}

    def _emit(self, event: str, payload: Any = None) -> None:
        if self.bus is not None:
            self.bus.emit(event, payload)

    def _fail(self, operation: str, error: str) -> None:
        logger.error("Storage {} failed for {}: {}", operation, self.path, error)
        self._emit("storage:error", {"operation": operation, "error": error, "path": str(self.path)})

    def add_migration(self, from_version: str, migration: Migration) -> None:
        """Register *migration* for envelopes written with *from_version*."""
        self._migrations[str(from_version)] = migration

    # -- persistence --------------------------------------------------------

    def save(self, data: Mapping[str, Any]) -> bool:
        envelope = {"version": STORAGE_VERSION, "timestamp": _now_iso(), "data": dict(data)}
        try:
            with FileLock(_lock_path(self.path)):
                _save_data(self.path, envelope)
        except (OSError, TypeError, ValueError, yaml.YAMLError) as exc:
            self._fail("save", f"{exc.__class__.__name__}: {exc}")
            return False
        logger.debug("Saved state to {}", self.path)
        self._emit("storage:saved", {"path": str(self.path), "timestamp": envelope["timestamp"]})
        return True

    def load(self, default: Any = None) -> Any:
        """Return the stored ``data`` mapping, or *default*.

        An unreadable file is left untouched on disk.
        """
        if not self.path.exists():
            return default
        with FileLock(_lock_path(self.path)):
            raw, err = _load_data_with_error(self.path, {})
        if err:
            self._fail("load", err)
            return default
        if not raw:
            return default
        try:
            data = self._unwrap(raw)
        except (ValidationError, TypeError, ValueError) as exc:
            self._fail("migrate", f"{exc.__class__.__name__}: {exc}")
            return default
        self._emit("storage:loaded", {"path": str(self.path)})
        return data

    def clear(self) -> bool:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            self._fail("clear", f"{exc.__class__.__name__}: {exc}")
            return False
        logger.info("Cleared stored state at {}", self.path)
        self._emit("storage:cleared", {"path": str(self.path)})
        return True

    def info(self) -> dict[str, Any]:
        size = 0
        last_modified = None
        version = None
        if self.path.exists():
            stat = self.path.stat()
            size = stat.st_size
            last_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
            raw, err = _load_data_with_error(self.path, {})
            if not err:
                version = raw.get("version")
        parent = self.path.parent
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        return {
            "path": str(self.path),
            "version": version,
            "size": size,
            "size_formatted": format_bytes(size),
            "last_modified": last_modified,
            "available": os.access(parent, os.W_OK),
        }

    # -- migrations ---------------------------------------------------------

    def _unwrap(self, raw: dict[str, Any]) -> dict[str, Any]:
        if isinstance(raw.get("data"), Mapping) and "version" in raw:
            version: Optional[str] = str(raw["version"])
            data = dict(raw["data"])
        else:
            version = None
            data = dict(raw)

        migrated = False
        if version != STORAGE_VERSION and version in self._migrations:
            data = self._migrations[version](data)
            migrated = True
        data, legacy = migrate_legacy_data(data)
        if migrated or legacy:
            logger.info("Migrated stored state from version {} to {}", version or "legacy", STORAGE_VERSION)
            self._emit("storage:migrated", {"from_version": version, "to_version": STORAGE_VERSION})
        return data
