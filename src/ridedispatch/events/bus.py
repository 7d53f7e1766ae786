"""In-process publish/subscribe for ride and driver state changes.

The core only persists state; this bus is the boundary where the
notification layer attaches listeners.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count

from ridedispatch.events.schemas import DriverStatusEvent, RideEvent

logger = logging.getLogger(__name__)

Event = RideEvent | DriverStatusEvent
Listener = Callable[[Event], None]


@dataclass(frozen=True)
class _Subscription:
    listener: Listener
    event_types: frozenset[str] | None


class EventBus:
    """Thread-safe fan-out of events to subscribed listeners.

    A failing listener is logged and skipped; it never fails the
    operation that published the event.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = count(1)

    def subscribe(
        self, listener: Listener, event_types: set[str] | None = None
    ) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            token = next(self._ids)
            self._subscriptions[token] = _Subscription(
                listener, frozenset(event_types) if event_types else None
            )

        def unsubscribe() -> None:
            with self._lock:
                self._subscriptions.pop(token, None)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())

        for subscription in subscriptions:
            if (
                subscription.event_types is not None
                and event.event_type not in subscription.event_types
            ):
                continue
            try:
                subscription.listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event.event_type)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
