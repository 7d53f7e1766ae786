"""Prometheus metrics for the dispatch core."""

from prometheus_client import CollectorRegistry, Counter, generate_latest

# Use a separate registry to avoid default Python metrics
REGISTRY = CollectorRegistry()

ride_transitions = Counter(
    "ridedispatch_ride_transitions_total",
    "Ride status transitions by target status",
    ["status"],
    registry=REGISTRY,
)

accept_outcomes = Counter(
    "ridedispatch_accept_outcomes_total",
    "Driver accept attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

location_reports = Counter(
    "ridedispatch_location_reports_total",
    "Accepted location reports by actor role",
    ["role"],
    registry=REGISTRY,
)

stale_drivers_expired = Counter(
    "ridedispatch_stale_drivers_expired_total",
    "Drivers marked offline because their last report went stale",
    registry=REGISTRY,
)


def render_metrics() -> bytes:
    return generate_latest(REGISTRY)
