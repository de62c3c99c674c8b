"""In-process notification bus for coarse-grained integration.

Event names follow ``namespace:event`` (``board:added``, ``state:undo``,
``storage:saved``). Listeners receive a single payload argument and run
synchronously in registration order; a failing listener is logged and
skipped.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from loguru import logger

Listener = Callable[[Any], None]


class EventBus:
    """Publish/subscribe hub shared by the store, services and app.

    Usage::

        bus = EventBus()
        off = bus.on("board:added", lambda board: print(board.name))
        bus.emit("board:added", board)
        off()
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register *callback* for *event* and return its unsubscribe function."""
        listeners = self._listeners.setdefault(event, [])
        if callback not in listeners:
            listeners.append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: str, callback: Optional[Listener] = None) -> None:
        """Remove *callback* from *event*, or every listener when omitted."""
        listeners = self._listeners.get(event)
        if listeners is None:
            return
        if callback is None:
            listeners.clear()
        elif callback in listeners:
            listeners.remove(callback)
        if not listeners:
            del self._listeners[event]

    def once(self, event: str, callback: Listener) -> Callable[[], None]:
        def _wrapper(payload: Any) -> None:
            self.off(event, _wrapper)
            callback(payload)

        return self.on(event, _wrapper)

    def emit(self, event: str, payload: Any = None) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for callback in list(listeners):
            try:
                callback(payload)
            except Exception:
                logger.exception("Error in event listener for '{}'", event)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(v) for v in self._listeners.values())

    def clear(self) -> None:
        self._listeners.clear()
