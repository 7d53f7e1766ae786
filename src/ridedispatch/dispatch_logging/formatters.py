"""Log formatters for JSON and human-readable output."""

import json
import logging
from datetime import UTC, datetime

from .context import RIDE_FIELDS


class JSONFormatter(logging.Formatter):
    """Formats logs as JSON for production environments."""

    def __init__(self, environment: str = "development"):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "env": self.environment,
        }

        for field in RIDE_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class DevFormatter(logging.Formatter):
    """Human-readable format for development.

    Inside a ride scope the line carries the ride status and the acting
    party, e.g. ``[accepted driver:driver_1]``.
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s [%(levelname)8s] [corr=%(correlation_id)s]%(ride_scope)s "
                "%(name)s: %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        parts = []
        status = getattr(record, "ride_status", None)
        if status:
            parts.append(status)
        role = getattr(record, "actor_role", None)
        if role:
            parts.append(f"{role}:{getattr(record, 'actor_id', '?')}")
        record.ride_scope = f" [{' '.join(parts)}]" if parts else ""
        return super().format(record)
