"""Per-thread ride scope attached to log records.

Dispatch and lifecycle operations open a scope naming the ride and the
party acting on it. Transitions record the ride's status in the open
scope, so a line logged mid-operation shows the state the ride was in.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from ridedispatch.driver import Actor
from ridedispatch.ride import RideStatus

RIDE_FIELDS = (
    "ride_id",
    "ride_status",
    "actor_id",
    "actor_role",
    "rider_id",
    "driver_id",
    "correlation_id",
)


class LogContext:
    """Thread-local field storage behind the ride scope."""

    _local = threading.local()

    @classmethod
    def set(cls, **kwargs: Any) -> None:
        cls.get().update(kwargs)

    @classmethod
    def get(cls) -> dict[str, Any]:
        if not hasattr(cls._local, "context"):
            cls._local.context = {}
        ctx: dict[str, Any] = cls._local.context
        return ctx

    @classmethod
    def clear(cls) -> None:
        cls._local.context = {}


class ContextFilter(logging.Filter):
    """Copies the current scope onto records that do not set the field themselves."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in LogContext.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Add fields for the duration of the block; the outer scope is restored on exit."""
    previous = dict(LogContext.get())
    LogContext.set(**kwargs)
    try:
        yield
    finally:
        LogContext.clear()
        LogContext.set(**previous)


@contextmanager
def log_ride_context(
    ride_id: str, actor: Actor | None = None, **kwargs: Any
) -> Iterator[None]:
    """Scope records to one ride and, when given, the actor operating on it.

    The actor's id is also filed under rider_id or driver_id by role.
    """
    fields: dict[str, Any] = {"ride_id": ride_id, "correlation_id": ride_id}
    if actor is not None:
        fields["actor_id"] = actor.actor_id
        fields["actor_role"] = actor.role.value
        fields[f"{actor.role.value}_id"] = actor.actor_id
    fields.update(kwargs)
    with log_context(**fields):
        yield


def note_ride_status(status: RideStatus) -> None:
    """Record the ride's current status in the open ride scope, if any."""
    if "ride_id" in LogContext.get():
        LogContext.set(ride_status=status.value)
