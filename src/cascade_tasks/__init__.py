"""Provide the public `cascade_tasks` package exports."""

from __future__ import annotations

from .app import CascadeApp
from .events import EventBus
from .models import Board, Task, TaskStatus, create_board, create_task
from .state import StateStore, derive_tasks

__all__ = [
    "Board",
    "CascadeApp",
    "EventBus",
    "StateStore",
    "Task",
    "TaskStatus",
    "create_board",
    "create_task",
    "derive_tasks",
]
