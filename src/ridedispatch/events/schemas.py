from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

RideEventType = Literal[
    "ride.searching",
    "ride.accepted",
    "ride.arrived",
    "ride.in_progress",
    "ride.completed",
    "ride.cancelled",
    "ride.assignment_rolled_back",
    "ride.rated",
]


class CorrelationMixin(BaseModel):
    """Mixin adding tracing fields to events."""

    correlation_id: str | None = Field(
        default=None, description="Primary correlation ID (e.g., ride_id)"
    )


class RideEvent(CorrelationMixin):
    """Event for ride state transitions"""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: RideEventType
    ride_id: str
    timestamp: str
    rider_id: str
    driver_id: str | None
    status: str
    ride_type: str
    fare: float | None = None
    distance_km: float | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    rating: int | None = None


class DriverStatusEvent(CorrelationMixin):
    """Driver availability change event"""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: Literal["driver.status"] = "driver.status"
    driver_id: str
    timestamp: str
    previous_status: str | None
    new_status: str
    current_ride_id: str | None = None
