from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
from loguru import logger

from cascade_tasks.config import Settings
from cascade_tasks.events import EventBus
from cascade_tasks.models import Board
from cascade_tasks.services import BoardService, DataTransfer, TaskService
from cascade_tasks.state import StateStore


class EventRecorder:
    """Collects every emission of the named events, in order."""

    def __init__(self, bus: EventBus, *events: str) -> None:
        self.events: list[tuple[str, Any]] = []
        for event in events:
            bus.on(event, lambda payload, _event=event: self.events.append((_event, payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> list[Any]:
        return [payload for event, payload in self.events if event == name]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(bus: EventBus) -> StateStore:
    return StateStore(bus)


@pytest.fixture
def board_service(store: StateStore, bus: EventBus) -> BoardService:
    return BoardService(store, bus)


@pytest.fixture
def task_service(store: StateStore, bus: EventBus) -> TaskService:
    return TaskService(store, bus)


@pytest.fixture
def transfer(store: StateStore, board_service: BoardService, bus: EventBus) -> DataTransfer:
    return DataTransfer(store, board_service, bus)


@pytest.fixture
def two_boards(store: StateStore) -> tuple[Board, Board]:
    first = Board(name="Work")
    second = Board(name="Home")
    store.set_state({"boards": (first, second), "current_board_id": first.id})
    return first, second


@pytest.fixture
def settings() -> Settings:
    return Settings(enable_auto_archive=False)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    """Capture loguru output as ``"LEVEL message"`` lines."""
    messages: list[str] = []
    sink_id = logger.add(
        lambda message: messages.append(f"{message.record['level'].name} {message.record['message']}"),
        level="DEBUG",
    )
    try:
        yield messages
    finally:
        logger.remove(sink_id)


@pytest.fixture
def record_events(bus: EventBus) -> Callable[..., EventRecorder]:
    """Return a factory that starts recording the given events on ``bus``."""

    def _factory(*events: str) -> EventRecorder:
        return EventRecorder(bus, *events)

    return _factory
