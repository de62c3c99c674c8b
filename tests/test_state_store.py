"""Tests for StateStore reads, writes, derived tasks, history and subscribers."""

from __future__ import annotations

from typing import Any

import pytest

from cascade_tasks.models import Board, Task, TaskStatus, create_task
from cascade_tasks.state import StateStore, derive_tasks


def _assert_invariants(store: StateStore) -> None:
    boards = store.get("boards")
    current = store.get("current_board_id")
    assert current is None or any(b.id == current for b in boards)
    expected = next((b.tasks for b in boards if b.id == current), ())
    assert store.get("tasks") == expected
    assert -1 <= store.get("history_index") <= len(store.get("history")) - 1
    assert len(store.get("history")) <= store.get("max_history_size")


class TestDeriveTasks:
    def test_no_selection(self) -> None:
        assert derive_tasks((Board(name="A", tasks=(create_task("a"),)),), None) == ()

    def test_selected_board(self) -> None:
        task = create_task("a")
        a = Board(name="A", tasks=(task,))
        b = Board(name="B")
        assert derive_tasks((a, b), a.id) == (task,)
        assert derive_tasks((a, b), b.id) == ()

    def test_unknown_board(self) -> None:
        assert derive_tasks((Board(name="A"),), "missing") == ()


class TestReads:
    def test_initial_state(self, store: StateStore) -> None:
        state = store.get_state()
        assert state["boards"] == ()
        assert state["current_board_id"] is None
        assert state["tasks"] == ()
        assert state["filter"] == "all"
        assert state["history"] == ()
        assert state["history_index"] == -1
        assert state["max_history_size"] == 50

    def test_idempotent_read(self, store: StateStore, two_boards: tuple[Board, Board]) -> None:
        assert store.get_state() == store.get_state()

    def test_get_state_returns_copy(self, store: StateStore) -> None:
        state = store.get_state()
        state["filter"] = "hacked"
        assert store.get("filter") == "all"

    def test_get_unknown_key(self, store: StateStore) -> None:
        assert store.get("nope") is None
        assert store.get("nope", 5) == 5

    def test_unhashable_key_returns_default(self, store: StateStore) -> None:
        assert store.get(["filter"]) is None
        assert store.get({"filter"}, "fallback") == "fallback"


class TestSetState:
    def test_merge_and_extra_keys(self, store: StateStore) -> None:
        store.set_state({"filter": "todo", "search": "milk"})
        assert store.get("filter") == "todo"
        assert store.get("search") == "milk"

    def test_non_mapping_is_logged_noop(self, store: StateStore, log_messages: list[str]) -> None:
        store.set_state(["filter", "x"])  # type: ignore[arg-type]
        assert store.get("filter") == "all"
        assert store.get("history") == ()
        assert any(m.startswith("WARNING") and "set_state" in m for m in log_messages)

    def test_reserved_keys_are_dropped(self, store: StateStore, log_messages: list[str]) -> None:
        store.set_state({"tasks": (create_task("sneaky"),), "history_index": 7, "filter": "done"})
        assert store.get("tasks") == ()
        assert store.get("history_index") == 0
        assert store.get("filter") == "done"
        assert sum("cannot be set directly" in m for m in log_messages) == 2

    def test_board_mappings_are_normalized(self, store: StateStore) -> None:
        store.set_state({"boards": [{"id": "b1", "name": "Work", "tasks": [{"text": "a"}]}]})
        boards = store.get("boards")
        assert isinstance(boards, tuple)
        assert isinstance(boards[0], Board)
        assert isinstance(boards[0].tasks[0], Task)

    def test_invalid_board_rejects_whole_update(self, store: StateStore) -> None:
        store.set_state({"boards": [{"name": ""}], "filter": "done"})
        assert store.get("boards") == ()
        assert store.get("filter") == "all"

    def test_duplicate_board_ids_rejected(self, store: StateStore) -> None:
        board = Board(id="b1", name="Work")
        store.set_state({"boards": (board, Board(id="b1", name="Other"))})
        assert store.get("boards") == ()

    def test_two_default_boards_rejected(self, store: StateStore) -> None:
        store.set_state({"boards": (Board(name="A", is_default=True), Board(name="B", is_default=True))})
        assert store.get("boards") == ()

    def test_unknown_current_board_rejected(self, store: StateStore, two_boards: tuple[Board, Board]) -> None:
        first, _ = two_boards
        store.set_state({"current_board_id": "missing"})
        assert store.get("current_board_id") == first.id

    def test_current_board_dropped_from_boards_is_redirected(
        self, store: StateStore, two_boards: tuple[Board, Board]
    ) -> None:
        _, second = two_boards
        store.set_state({"boards": (second,)})
        assert store.get("current_board_id") == second.id
        _assert_invariants(store)

    def test_unchanged_value_is_not_recorded(self, store: StateStore) -> None:
        calls: list[Any] = []
        store.set_state({"filter": "todo"})
        store.subscribe("filter", lambda new, old: calls.append(new))

        store.set_state({"filter": "todo"})

        assert calls == []
        assert len(store.get("history")) == 1

    def test_add_to_history_false(self, store: StateStore) -> None:
        store.set_state({"filter": "todo"}, add_to_history=False)
        assert store.get("filter") == "todo"
        assert store.get("history") == ()

        store.set_state({"filter": "done"})
        assert len(store.get("history")) == 1
        assert store.get("history")[0]["filter"] == "done"

    def test_silent_skips_subscribers(self, store: StateStore, record_events) -> None:
        calls: list[Any] = []
        store.subscribe("filter", lambda new, old: calls.append(new))
        recorder = record_events("state:changed")

        store.set_state({"filter": "todo"}, silent=True)

        assert store.get("filter") == "todo"
        assert calls == []
        assert recorder.events == []

    def test_state_changed_event(self, store: StateStore, record_events) -> None:
        recorder = record_events("state:changed")
        store.set_state({"filter": "todo"})
        assert recorder.payloads("state:changed") == [{"filter": "todo"}]

    def test_snapshot_excludes_history_keys(self, store: StateStore) -> None:
        store.set_state({"filter": "todo"})
        snapshot = store.get("history")[0]
        assert "history" not in snapshot
        assert "history_index" not in snapshot
        assert snapshot["filter"] == "todo"


class TestDerivedTasks:
    def test_tasks_follow_selection(self, store: StateStore) -> None:
        task = create_task("a")
        a = Board(name="A", tasks=(task,))
        b = Board(name="B")
        store.set_state({"boards": (a, b), "current_board_id": a.id})
        assert store.get("tasks") == (task,)

        store.set_state({"current_board_id": b.id})
        assert store.get("tasks") == ()

        store.set_state({"current_board_id": None})
        assert store.get("tasks") == ()
        _assert_invariants(store)

    def test_tasks_notified_after_caller_keys_in_same_pass(self, store: StateStore) -> None:
        order: list[str] = []
        store.subscribe("tasks", lambda new, old: order.append("tasks"))
        store.subscribe("current_board_id", lambda new, old: order.append("current_board_id"))
        store.subscribe("boards", lambda new, old: order.append("boards"))

        board = Board(name="A", tasks=(create_task("a"),))
        store.set_state({"boards": (board,), "current_board_id": board.id})

        assert order == ["boards", "current_board_id", "tasks"]
        assert len(store.get("history")) == 1

    def test_invariants_hold_through_a_session(self, store: StateStore) -> None:
        a = Board(name="A", tasks=(create_task("a"),))
        b = Board(name="B", tasks=(create_task("b"),))
        store.add_board(a, make_current=True)
        _assert_invariants(store)
        store.add_board(b)
        store.set_current_board(b.id)
        _assert_invariants(store)
        store.update_board(b.id, {"tasks": b.tasks + (create_task("c"),)})
        _assert_invariants(store)
        store.remove_board(b.id)
        _assert_invariants(store)
        while store.undo():
            _assert_invariants(store)
        while store.redo():
            _assert_invariants(store)


class TestUndoRedo:
    def test_filter_round_trip(self, store: StateStore) -> None:
        store.set_state({"filter": "doing"})
        store.set_state({"filter": "todo"})

        assert store.undo() is True
        assert store.redo() is True
        assert store.get("filter") == "todo"
        assert store.get("history_index") == 1

    def test_undo_and_redo_restore_values(self, store: StateStore) -> None:
        store.set_state({"filter": "doing"})
        store.set_state({"filter": "todo"})

        assert store.undo() is True
        assert store.get("filter") == "doing"
        assert store.redo() is True
        assert store.get("filter") == "todo"

    def test_boundaries_return_false(self, store: StateStore) -> None:
        assert store.undo() is False
        assert store.redo() is False
        store.set_state({"filter": "todo"})
        assert store.can_undo() is False
        assert store.undo() is False

    def test_history_bound(self, store: StateStore) -> None:
        for i in range(60):
            store.set_state({"filter": f"f{i}"})

        assert len(store.get("history")) == 50
        assert store.get("history_index") == 49

        for expected in range(58, 9, -1):
            assert store.undo() is True
            assert store.get("filter") == f"f{expected}"
        assert store.undo() is False

    def test_write_after_undo_discards_redo(self, store: StateStore) -> None:
        store.set_state({"filter": "a"})
        store.set_state({"filter": "b"})
        store.undo()
        store.set_state({"filter": "c"})

        assert store.can_redo() is False
        assert [s["filter"] for s in store.get("history")] == ["a", "c"]

    def test_undo_notifies_changed_keys_and_emits(self, store: StateStore, record_events) -> None:
        store.set_state({"filter": "a"})
        store.set_state({"filter": "b"})
        calls: list[tuple[Any, Any]] = []
        boards_calls: list[Any] = []
        store.subscribe("filter", lambda new, old: calls.append((new, old)))
        store.subscribe("boards", lambda new, old: boards_calls.append(new))
        recorder = record_events("state:undo", "state:redo", "state:changed")

        store.undo()
        store.redo()

        assert calls == [("a", "b"), ("b", "a")]
        assert boards_calls == []
        assert recorder.names() == ["state:undo", "state:changed", "state:redo", "state:changed"]
        assert recorder.payloads("state:undo")[0]["history_index"] == 0
        assert recorder.payloads("state:changed")[0] == {"filter": "a"}

    def test_undo_recomputes_tasks(self, store: StateStore) -> None:
        board = Board(name="A")
        store.add_board(board, make_current=True)
        store.update_board(board.id, {"tasks": (create_task("a"),)})
        assert len(store.get("tasks")) == 1

        store.undo()
        assert store.get("tasks") == ()
        _assert_invariants(store)

    def test_history_is_not_aliased_by_later_writes(self, store: StateStore) -> None:
        board = Board(name="A")
        store.add_board(board, make_current=True)
        first_snapshot = store.get("history")[0]

        store.update_board(board.id, {"name": "Renamed"})

        assert first_snapshot["boards"][0].name == "A"


class TestSubscriptions:
    def test_order_and_arguments(self, store: StateStore) -> None:
        calls: list[tuple[str, Any, Any]] = []
        store.subscribe("filter", lambda new, old: calls.append(("first", new, old)))
        store.subscribe("filter", lambda new, old: calls.append(("second", new, old)))

        store.set_state({"filter": "x"})

        assert calls == [("first", "x", "all"), ("second", "x", "all")]

    def test_unsubscribe_only_removes_that_registration(self, store: StateStore) -> None:
        calls: list[str] = []
        off = store.subscribe("filter", lambda new, old: calls.append("first"))
        store.subscribe("filter", lambda new, old: calls.append("second"))

        off()
        store.set_state({"filter": "x"})

        assert calls == ["second"]
        assert store.subscriber_count("filter") == 1

    def test_raising_subscriber_is_contained(self, store: StateStore, log_messages: list[str]) -> None:
        calls: list[Any] = []

        def boom(new: Any, old: Any) -> None:
            raise RuntimeError("boom")

        store.subscribe("filter", boom)
        store.subscribe("filter", lambda new, old: calls.append(new))

        store.set_state({"filter": "x"})

        assert store.get("filter") == "x"
        assert calls == ["x"]
        assert any(m.startswith("ERROR") for m in log_messages)

    def test_reentrant_write_runs_after_outer_write(self, store: StateStore) -> None:
        calls: list[tuple[str, Any, Any]] = []

        def redirect(new: Any, old: Any) -> None:
            calls.append(("redirect", new, old))
            if new == "a":
                store.set_state({"filter": "b"})

        store.subscribe("filter", redirect)
        store.subscribe("filter", lambda new, old: calls.append(("observer", new, old)))

        store.set_state({"filter": "a"})

        assert store.get("filter") == "b"
        assert calls == [
            ("redirect", "a", "all"),
            ("observer", "a", "all"),
            ("redirect", "b", "a"),
            ("observer", "b", "a"),
        ]
        assert [s["filter"] for s in store.get("history")] == ["a", "b"]

    def test_reentrant_board_helper_is_queued(self, store: StateStore) -> None:
        extra = Board(name="Extra")

        def add_once(new: Any, old: Any) -> None:
            if store.get_board(extra.id) is None:
                assert store.add_board(extra) is None

        store.subscribe("boards", add_once)
        store.add_board(Board(name="Main"))

        assert [b.name for b in store.get("boards")] == ["Main", "Extra"]


    def test_undo_from_subscriber_runs_after_outer_write(self, store: StateStore) -> None:
        store.set_state({"filter": "a"})
        seen: list[Any] = []
        results: list[bool] = []

        def revert(new: Any, old: Any) -> None:
            seen.append(new)
            if new == "b":
                results.append(store.undo())
                # Still the outer write's value until it settles.
                seen.append(store.get("filter"))

        store.subscribe("filter", revert)
        store.set_state({"filter": "b"})

        assert results == [True]
        assert seen == ["b", "b", "a"]
        assert store.get("filter") == "a"
        assert store.get("history_index") == 0
        assert store.can_redo() is True
        assert [s["filter"] for s in store.get("history")] == ["a", "b"]

    def test_undo_from_subscriber_at_oldest_entry(self, store: StateStore) -> None:
        results: list[bool] = []
        store.subscribe("filter", lambda new, old: results.append(store.undo()))

        store.set_state({"filter": "a"})

        assert results == [False]
        assert store.get("filter") == "a"
        assert store.get("history_index") == 0

class TestReset:
    def test_reset_restores_initial_state(self, store: StateStore, record_events) -> None:
        calls: list[Any] = []
        store.subscribe("filter", lambda new, old: calls.append(new))
        store.add_board(Board(name="A"), make_current=True)
        store.set_state({"filter": "todo", "extra": 1})
        recorder = record_events("state:reset")

        store.reset()

        state = store.get_state()
        assert state["boards"] == ()
        assert state["current_board_id"] is None
        assert state["filter"] == "all"
        assert "extra" not in state
        assert state["history"] == ()
        assert state["history_index"] == -1
        assert recorder.names() == ["state:reset"]

        store.set_state({"filter": "done"})
        assert calls == ["todo"]


def test_end_to_end_scenario(store: StateStore) -> None:
    store.add_board({"id": "b1", "name": "Work", "tasks": []})
    store.set_current_board("b1")
    board = store.get_board("b1")
    task = Task(id="t1", text="Buy milk", status=TaskStatus.TODO)
    boards = tuple(b.add_task(task) if b.id == "b1" else b for b in store.get("boards"))
    store.set_state({"boards": boards})

    current = store.get_current_board()
    assert current is not None and board is not None
    assert len(current.tasks) == 1
    assert current.tasks[0].text == "Buy milk"

    store.undo()
    assert len(store.get_current_board().tasks) == 0

    store.redo()
    assert len(store.get_current_board().tasks) == 1


@pytest.mark.parametrize("size", [1, 3])
def test_custom_history_size(size: int) -> None:
    store = StateStore(max_history_size=size)
    for i in range(size + 2):
        store.set_state({"filter": str(i)})
    assert len(store.get("history")) == size
