from .context import (
    RIDE_FIELDS,
    ContextFilter,
    LogContext,
    log_context,
    log_ride_context,
    note_ride_status,
)
from .filters import DefaultCorrelationFilter, PIIFilter
from .formatters import DevFormatter, JSONFormatter
from .setup import setup_logging

__all__ = [
    "ContextFilter",
    "DefaultCorrelationFilter",
    "DevFormatter",
    "JSONFormatter",
    "LogContext",
    "PIIFilter",
    "RIDE_FIELDS",
    "log_context",
    "log_ride_context",
    "note_ride_status",
    "setup_logging",
]
