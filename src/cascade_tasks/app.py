"""Application wiring: one store, bus, storage and service set per session."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from loguru import logger

from .config import Settings, load_settings
from .events import EventBus
from .services import BoardService, DataTransfer, TaskService
from .state import StateStore
from .storage import FileStorage

PERSISTED_KEYS = ("boards", "current_board_id", "filter")


class CascadeApp:
    """Owns the store for one session and keeps storage in step with it.

    Example::

        app = CascadeApp(Path("~/.cascade_tasks").expanduser()).start()
        app.tasks.create_task("Write release notes")
    """

    def __init__(
        self,
        state_dir: Union[str, Path],
        settings: Optional[Settings] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.state_dir = Path(state_dir)
        if settings is None:
            settings, err = load_settings(self.state_dir)
            if err:
                logger.warning("Ignoring invalid settings file: {}", err)
        self.settings = settings
        self.bus = bus if bus is not None else EventBus()
        self.store = StateStore(self.bus, max_history_size=settings.max_history_size)
        self.storage = FileStorage(self.state_dir / settings.storage_file, bus=self.bus)
        self.boards = BoardService(self.store, self.bus)
        self.tasks = TaskService(self.store, self.bus)
        self.transfer = DataTransfer(self.store, self.boards, self.bus)
        self._autosave_off: Optional[Callable[[], None]] = None
        self.started = False

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> "CascadeApp":
        """Load persisted state, ensure a default board and enable autosave."""
        self._load_stored_state()
        dirty = False
        if not self.store.get("boards"):
            self.boards.create_default_board(self.settings.default_board_name)
            # An unreadable file is kept until the next real change.
            dirty = not self.storage.path.exists()
        if self.store.get("current_board_id") is None:
            fallback = self.boards.create_default_board(self.settings.default_board_name)
            self.store.set_state({"current_board_id": fallback.id}, add_to_history=False)
        if self.settings.enable_auto_archive and self.tasks.auto_archive(self.settings.auto_archive_days):
            dirty = True
        if self.settings.autosave:
            self._enable_autosave()
            if dirty:
                self.save()
        self.started = True
        logger.debug("Application ready with {} board(s)", len(self.store.get("boards")))
        self.bus.emit("app:ready", {"boards": len(self.store.get("boards"))})
        return self

    def close(self) -> None:
        if self._autosave_off is not None:
            self._autosave_off()
            self._autosave_off = None
        self.started = False

    def reset_app(self) -> None:
        """Wipe storage and state, then start over with a fresh default board."""
        self.storage.clear()
        self.store.reset()
        self.boards.create_default_board(self.settings.default_board_name)
        if self.settings.autosave:
            self.save()
        logger.info("Application data reset")
        self.bus.emit("app:reset", None)

    # -- persistence --------------------------------------------------------

    def snapshot_data(self) -> dict[str, Any]:
        return {
            "boards": [b.to_dict() for b in self.store.get("boards")],
            "current_board_id": self.store.get("current_board_id"),
            "filter": self.store.get("filter"),
        }

    def save(self) -> bool:
        return self.storage.save(self.snapshot_data())

    def set_filter(self, value: str) -> None:
        self.store.set_state({"filter": value})

    # -- internals ----------------------------------------------------------

    def _load_stored_state(self) -> bool:
        """Return ``True`` when stored boards were loaded into the store."""
        data = self.storage.load()
        if not isinstance(data, Mapping) or not data.get("boards"):
            return False
        self.store.set_state(
            {"boards": data["boards"], "filter": data.get("filter") or "all"},
            add_to_history=False,
        )
        if not self.store.get("boards"):
            logger.error("Stored state in {} could not be loaded", self.storage.path)
            self.bus.emit("app:error", {"error": f"Stored state in {self.storage.path} could not be loaded"})
            return False
        current = data.get("current_board_id")
        if current is not None and self.store.get_board(current) is not None:
            self.store.set_state({"current_board_id": current}, add_to_history=False)
        return True

    def _enable_autosave(self) -> None:
        if self._autosave_off is not None:
            return

        def _on_change(changes: Any) -> None:
            if isinstance(changes, Mapping) and any(k in changes for k in PERSISTED_KEYS):
                self.save()

        self._autosave_off = self.bus.on("state:changed", _on_change)
