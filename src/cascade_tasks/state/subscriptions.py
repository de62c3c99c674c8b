"""Per-field subscriber lists for the state store."""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from typing import Any, Callable, Optional

from loguru import logger

FieldCallback = Callable[[Any, Any], None]

_handle_ids = count(1)


@dataclass(eq=False)
class Subscription:
    """Handle for one registration.

    Handles compare by identity, so two registrations of the same callback
    on the same key are independent.
    """

    key: str
    callback: FieldCallback
    id: int = field(default_factory=lambda: next(_handle_ids))
    active: bool = True


class SubscriptionRegistry:
    """Ordered callbacks keyed by state field name."""

    def __init__(self) -> None:
        self._by_key: dict[str, list[Subscription]] = {}

    def register(self, key: str, callback: FieldCallback) -> Subscription:
        handle = Subscription(key=key, callback=callback)
        self._by_key.setdefault(key, []).append(handle)
        return handle

    def unregister(self, handle: Subscription) -> bool:
        """Remove *handle*; returns ``False`` if it was already gone."""
        handle.active = False
        handles = self._by_key.get(handle.key)
        if not handles:
            return False
        for i, existing in enumerate(handles):
            if existing is handle:
                del handles[i]
                if not handles:
                    del self._by_key[handle.key]
                return True
        return False

    def notify(self, key: str, new_value: Any, old_value: Any) -> int:
        """Call every subscriber of *key* with ``(new_value, old_value)``.

        Iterates over a copy so callbacks may (un)subscribe while being
        notified; handles removed mid-pass are skipped. Returns the number
        of callbacks that ran without raising.
        """
        delivered = 0
        for handle in list(self._by_key.get(key, ())):
            if not handle.active:
                continue
            try:
                handle.callback(new_value, old_value)
                delivered += 1
            except Exception:
                logger.exception("Subscriber for '{}' raised; continuing", key)
        return delivered

    def count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._by_key.get(key, ()))
        return sum(len(v) for v in self._by_key.values())

    def keys(self) -> list[str]:
        return list(self._by_key)

    def clear(self) -> None:
        for handles in self._by_key.values():
            for handle in handles:
                handle.active = False
        self._by_key.clear()
