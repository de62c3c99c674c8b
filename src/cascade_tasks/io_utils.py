"""File helpers: cross-process lock, atomic JSON/YAML writes, tolerant loads."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

import yaml

WINDOWS_LOCK_BYTES = 1
YAML_SUFFIXES = {".yaml", ".yml"}


class FileLock:
    """Best-effort cross-platform file lock."""

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self.handle: Optional[Any] = None
        self.lock_bytes = WINDOWS_LOCK_BYTES

    def __enter__(self) -> "FileLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.handle = open(self.lock_path, "w")
        try:
            import fcntl
            fcntl.flock(self.handle, fcntl.LOCK_EX)
        except ImportError:
            if os.name == "nt":
                import msvcrt
                self.handle.seek(0)
                self.handle.truncate(self.lock_bytes)
                self.handle.flush()
                msvcrt.locking(self.handle.fileno(), msvcrt.LK_LOCK, self.lock_bytes)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.handle:
            return
        try:
            import fcntl
            fcntl.flock(self.handle, fcntl.LOCK_UN)
        except ImportError:
            if os.name == "nt":
                import msvcrt
                self.handle.seek(0)
                msvcrt.locking(self.handle.fileno(), msvcrt.LK_UNLCK, self.lock_bytes)
        self.handle.close()
        self.handle = None


def _lock_path(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


def _atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2, ensure_ascii=False)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def _atomic_write_yaml(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(
            data,
            handle,
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
        )
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def _save_data(path: Path, data: Any) -> None:
    if path.suffix in YAML_SUFFIXES:
        _atomic_write_yaml(path, data)
    else:
        _atomic_write_json(path, data)


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """
    Load JSON/YAML and return (data, error_message).

    A missing file is not an error. Parse and IO failures are reported so
    callers can avoid overwriting a corrupted file.
    """
    if not path.exists():
        return default, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in YAML_SUFFIXES:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
        if data is None and path.suffix in YAML_SUFFIXES:
            return default, None
        if not isinstance(data, dict):
            return default, f"{path.name}: expected object, got {type(data).__name__}"
        return data, None
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return default, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: YAMLError: {exc}"