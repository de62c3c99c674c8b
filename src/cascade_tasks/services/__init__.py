"""Validated board, task and import/export workflows on top of the store."""

from __future__ import annotations

from .boards import BoardService, BoardStatistics
from .tasks import TaskService
from .transfer import DataTransfer, ImportSummary

__all__ = ["BoardService", "BoardStatistics", "DataTransfer", "ImportSummary", "TaskService"]
