"""Tests for CascadeApp wiring, startup and autosave."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cascade_tasks.app import CascadeApp
from cascade_tasks.config import Settings, save_settings
from cascade_tasks.models import Board, Task, TaskStatus
from cascade_tasks.storage import FileStorage


def _stored(state_dir: Path) -> dict:
    return json.loads((state_dir / "cascade.json").read_text(encoding="utf-8"))["data"]


def test_first_start_creates_default_board(state_dir: Path, settings: Settings) -> None:
    app = CascadeApp(state_dir, settings=settings).start()

    board = app.store.get_current_board()
    assert board is not None
    assert board.name == "My Tasks"
    assert board.is_default is True
    assert _stored(state_dir)["current_board_id"] == board.id


def test_autosave_persists_changes(state_dir: Path, settings: Settings) -> None:
    app = CascadeApp(state_dir, settings=settings).start()
    app.tasks.create_task("Persist me")
    app.set_filter("todo")

    data = _stored(state_dir)
    assert data["filter"] == "todo"
    assert data["boards"][0]["tasks"][0]["text"] == "Persist me"


def test_undo_is_persisted(state_dir: Path, settings: Settings) -> None:
    app = CascadeApp(state_dir, settings=settings).start()
    app.tasks.create_task("Oops")
    app.store.undo()
    assert _stored(state_dir)["boards"][0]["tasks"] == []


def test_restart_restores_state_without_history(state_dir: Path, settings: Settings) -> None:
    first = CascadeApp(state_dir, settings=settings).start()
    work = first.boards.create_board("Work")
    first.tasks.create_task("Carry over")
    first.set_filter("doing")
    first.close()

    second = CascadeApp(state_dir, settings=settings).start()

    assert [b.name for b in second.store.get("boards")] == ["My Tasks", "Work"]
    assert second.store.get("current_board_id") == work.id
    assert [t.text for t in second.store.get("tasks")] == ["Carry over"]
    assert second.store.get("filter") == "doing"
    assert second.store.get("history") == ()


def test_autosave_disabled(state_dir: Path) -> None:
    app = CascadeApp(state_dir, settings=Settings(autosave=False, enable_auto_archive=False)).start()
    app.tasks.create_task("Not saved")
    assert not (state_dir / "cascade.json").exists()
    assert app.save() is True
    assert _stored(state_dir)["boards"][0]["tasks"][0]["text"] == "Not saved"


def test_start_runs_auto_archive(state_dir: Path) -> None:
    old = (datetime.now(timezone.utc) - timedelta(days=60)).isoformat()
    board = Board(
        name="Work",
        is_default=True,
        tasks=(Task(text="ancient", status=TaskStatus.DONE, completed_date=old), Task(text="open")),
    )
    FileStorage(state_dir / "cascade.json").save(
        {"boards": [board.to_dict()], "current_board_id": board.id, "filter": "all"}
    )

    app = CascadeApp(state_dir, settings=Settings(auto_archive_days=30)).start()

    assert [t.text for t in app.store.get("tasks")] == ["open"]
    assert [t["text"] for t in _stored(state_dir)["boards"][0]["archived_tasks"]] == ["ancient"]


def test_unknown_stored_current_board_falls_back(state_dir: Path, settings: Settings) -> None:
    board = Board(name="Work", is_default=True)
    FileStorage(state_dir / "cascade.json").save(
        {"boards": [board.to_dict()], "current_board_id": "gone", "filter": "all"}
    )
    app = CascadeApp(state_dir, settings=settings).start()
    assert app.store.get("current_board_id") == board.id


def test_corrupt_storage_is_not_overwritten_on_start(state_dir: Path, settings: Settings, record_events, bus) -> None:
    state_dir.mkdir(parents=True)
    path = state_dir / "cascade.json"
    path.write_text("{corrupt", encoding="utf-8")
    recorder = record_events("storage:error", "app:ready")

    app = CascadeApp(state_dir, settings=settings, bus=bus).start()

    assert app.store.get_current_board() is not None
    assert path.read_text(encoding="utf-8") == "{corrupt"
    assert recorder.names() == ["storage:error", "app:ready"]


def test_settings_loaded_from_state_dir(state_dir: Path) -> None:
    save_settings(state_dir, Settings(default_board_name="Inbox", max_history_size=5, enable_auto_archive=False))
    app = CascadeApp(state_dir).start()
    assert app.store.get_current_board().name == "Inbox"
    assert app.store.get("max_history_size") == 5


def test_reset_app(state_dir: Path, settings: Settings, record_events, bus) -> None:
    app = CascadeApp(state_dir, settings=settings, bus=bus).start()
    app.boards.create_board("Work")
    recorder = record_events("app:reset")

    app.reset_app()

    assert [b.name for b in app.store.get("boards")] == ["My Tasks"]
    assert [b["name"] for b in _stored(state_dir)["boards"]] == ["My Tasks"]
    assert recorder.names() == ["app:reset"]
