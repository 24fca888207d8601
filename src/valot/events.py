"""Minimal synchronous event bus.

Subscribers are plain callables taking one payload argument. Delivery is
best-effort: a subscriber that raises is logged and the remaining
subscribers still run, and `emit` itself never raises.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

PROVIDER_SWITCHED = "provider-switched"
PROVIDERS_CHANGED = "providers-changed"
DATA_MERGED = "data-merged"
DATA_REPLACED = "data-replaced"
DATABASE_EXPORTED = "database-exported"
DATABASE_RESET = "database-reset"


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Subscribe `handler` to `event`. Returns a function that unsubscribes it."""
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
        return lambda: self.off(event, handler)

    def off(self, event: str, handler: Handler) -> bool:
        """Remove one subscription. Returns False if it was not registered."""
        with self._lock:
            handlers = self._handlers.get(event, [])
            try:
                handlers.remove(handler)
            except ValueError:
                return False
            if not handlers:
                self._handlers.pop(event, None)
            return True

    def emit(self, event: str, payload: Any = None) -> int:
        """Deliver `payload` to every subscriber of `event`.

        Returns:
            Number of subscribers that ran without raising.
        """
        with self._lock:
            handlers = list(self._handlers.get(event, ()))

        delivered = 0
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("Subscriber %r failed handling %s", handler, event)
                continue
            delivered += 1
        logger.debug("Emitted %s to %d/%d subscribers", event, delivered, len(handlers))
        return delivered

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, ()))

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
