"""Load and validate user settings from `<state_dir>/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigError
from .io_utils import _atomic_write_yaml, _load_data_with_error
from .models import MAX_BOARD_NAME_LENGTH

CONFIG_FILE = "config.yaml"
STATE_DIR_ENV = "CASCADE_STATE_DIR"
DEFAULT_STATE_DIR = Path("~/.cascade_tasks")
LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseModel):
    """User-tunable application settings."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    auto_archive_days: int = Field(default=30, ge=1, le=365)
    enable_auto_archive: bool = True
    theme: Literal["light", "dark", "auto"] = "auto"
    autosave: bool = True
    debug_mode: bool = False
    max_import_file_size: int = Field(default=50_000, ge=1_000, le=1_000_000)
    max_history_size: int = Field(default=50, ge=1)
    default_board_name: str = Field(default="My Tasks", min_length=1, max_length=MAX_BOARD_NAME_LENGTH)
    log_level: str = "INFO"
    storage_file: str = "cascade.json"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("default_board_name")
    @classmethod
    def _strip_board_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default_board_name must not be blank")
        return value.strip()

    @field_validator("storage_file")
    @classmethod
    def _check_storage_file(cls, value: str) -> str:
        if not value or Path(value).name != value:
            raise ValueError("storage_file must be a plain file name")
        return value

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug_mode else self.log_level


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ())) or "settings"
        parts.append(f"{loc}: {error.get('msg')}")
    return "; ".join(parts)


def resolve_state_dir(explicit: Optional[Union[str, Path]] = None) -> Path:
    """Pick the state directory: explicit path, then ``$CASCADE_STATE_DIR``, then the default."""
    raw = explicit or os.environ.get(STATE_DIR_ENV) or DEFAULT_STATE_DIR
    return Path(raw).expanduser()


def load_settings(state_dir: Path) -> tuple[Settings, str | None]:
    """Load the optional settings file.

    Args:
        state_dir: Directory holding ``config.yaml``.

    Returns:
        A tuple of ``(settings, error_message)``. A missing file yields the
        defaults and no error; an invalid one yields the defaults and a
        message.
    """
    path = Path(state_dir) / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if err:
        return Settings(), err
    try:
        return Settings.model_validate(data), None
    except PydanticValidationError as exc:
        return Settings(), f"{path.name}: {_format_errors(exc)}"


def save_settings(state_dir: Path, settings: Settings) -> Path:
    path = Path(state_dir) / CONFIG_FILE
    _atomic_write_yaml(path, settings.model_dump())
    return path


def update_settings(settings: Settings, **changes: Any) -> Settings:
    """Return a copy of *settings* with *changes*, or raise :class:`ConfigError`."""
    unknown = set(changes) - set(Settings.model_fields)
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    merged = {**settings.model_dump(), **changes}
    try:
        return Settings.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigError(_format_errors(exc)) from exc
