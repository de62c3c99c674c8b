"""Reactive state store with derived task view and undo/redo history."""

from __future__ import annotations

from .history import DEFAULT_MAX_HISTORY_SIZE, HistoryManager, StateSnapshot
from .store import StateStore, derive_tasks
from .subscriptions import Subscription, SubscriptionRegistry

__all__ = [
    "DEFAULT_MAX_HISTORY_SIZE",
    "HistoryManager",
    "StateSnapshot",
    "StateStore",
    "Subscription",
    "SubscriptionRegistry",
    "derive_tasks",
]
