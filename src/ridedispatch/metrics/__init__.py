from .prometheus_exporter import (
    REGISTRY,
    accept_outcomes,
    location_reports,
    render_metrics,
    ride_transitions,
    stale_drivers_expired,
)

__all__ = [
    "REGISTRY",
    "accept_outcomes",
    "location_reports",
    "render_metrics",
    "ride_transitions",
    "stale_drivers_expired",
]
