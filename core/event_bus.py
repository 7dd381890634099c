"""In-process event bus plus a debounced change notifier."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from typing import Any

EventHandler = Callable[[dict[str, Any]], None]

CHANGE_EVENT = "brain.changed"

logger = logging.getLogger("brain.notifier")


class EventBus:
    """Dispatches events to subscribers by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a callback for an event."""
        self._handlers[event_name].append(handler)

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        """Emit an event to all subscribers."""
        for handler in self._handlers.get(event_name, []):
            handler(payload)


class DebouncedNotifier:
    """Coalesces rapid change notifications into one ``brain.changed`` event.

    Changes accumulate until ``debounce_seconds`` pass without a new one;
    ``poll`` then emits a single payload listing every changed collection and
    a combined summary. ``flush`` emits immediately.
    """

    def __init__(
        self,
        bus: EventBus,
        debounce_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._files: list[str] = []
        self._summaries: list[str] = []
        self._last_change: float | None = None

    @property
    def pending(self) -> bool:
        return self._last_change is not None

    def notify(self, collection: str, summary: str) -> None:
        if collection not in self._files:
            self._files.append(collection)
        if summary:
            self._summaries.append(summary)
        self._last_change = self._clock()

    def poll(self) -> dict[str, Any] | None:
        """Emit when the quiet period has elapsed; return the payload sent."""
        if self._last_change is None:
            return None
        if self._clock() - self._last_change < self.debounce_seconds:
            return None
        return self.flush()

    def flush(self) -> dict[str, Any] | None:
        if self._last_change is None:
            return None
        payload = {"files": list(self._files), "summary": "; ".join(self._summaries)}
        self._files.clear()
        self._summaries.clear()
        self._last_change = None
        try:
            self.bus.emit(CHANGE_EVENT, payload)
        except Exception as exc:
            logger.warning("change notification failed: %s", exc)
        return payload
