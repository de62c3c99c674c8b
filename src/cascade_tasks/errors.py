"""Exception hierarchy for board, task, storage and settings failures.

The state store itself never raises these for bad input; it logs and
ignores. Services, storage and config raise them so callers (the CLI,
tests) can tell failure kinds apart.
"""

from __future__ import annotations


class CascadeError(Exception):
    """Base class for all errors raised by :mod:`cascade_tasks`."""


class ValidationError(CascadeError, ValueError):
    """A value object or service input failed validation."""


class NotFoundError(CascadeError, KeyError):
    """A board or task id does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages.
        return str(self.args[0]) if self.args else ""


class ConflictError(CascadeError):
    """The operation would break a uniqueness or protection rule."""


class ImportFormatError(CascadeError, ValueError):
    """Imported data has an unrecognized shape or is too large."""


class StorageError(CascadeError):
    """Persistent storage could not be read or written."""


class ConfigError(CascadeError, ValueError):
    """Settings failed validation."""
