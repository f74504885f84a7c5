"""Event bus port and in-process implementation.

Delivery is best-effort: the unit of work publishes after the store
transaction commits and only logs publish failures.
"""

import threading
from typing import Callable, Protocol, runtime_checkable

from graphmem.domain.events import DomainEvent
from graphmem.log_config import get_logger

log = get_logger("events")

Subscriber = Callable[[DomainEvent], None]


@runtime_checkable
class EventBus(Protocol):
    def publish(self, event: DomainEvent) -> None:
        """Deliver one event. May raise; callers decide whether to care."""
        ...


class InMemoryEventBus:
    """Synchronous bus that records every published event.

    Subscribers are called in registration order, filtered by event type
    name (or "*" for all). A failing subscriber makes ``publish`` raise
    after the event has been recorded.
    """

    def __init__(self, max_history: int = 10_000):
        self._lock = threading.Lock()
        self._history: list[DomainEvent] = []
        self._subscribers: list[tuple[str, Subscriber]] = []
        self._max_history = max_history

    def subscribe(self, handler: Subscriber, event_type: str = "*") -> None:
        with self._lock:
            self._subscribers.append((event_type, handler))

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                del self._history[: len(self._history) - self._max_history]
            subscribers = [h for t, h in self._subscribers if t in ("*", event.event_type)]

        log.trace(f"Publishing {event.event_type} for {event.aggregate_id}")
        for handler in subscribers:
            handler(event)

    @property
    def events(self) -> list[DomainEvent]:
        with self._lock:
            return list(self._history)

    def events_of(self, event_type: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
