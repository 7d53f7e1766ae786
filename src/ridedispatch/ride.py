"""Ride request model and lifecycle state graph."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field


class RideStatus(str, Enum):
    """Ride lifecycle states."""

    SEARCHING = "searching"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def to_event_type(self) -> str:
        """Convert status to event type (e.g., 'ride.accepted')."""
        return f"ride.{self.value}"


class RideType(str, Enum):
    BIKE = "bike"
    CAR = "car"
    CAR_PLUS = "car_plus"
    PREMIUM = "premium"


TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

VALID_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

CancellationActor = Literal["rider", "driver"]


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_ride_id() -> str:
    return f"ride_{uuid4().hex}"


def is_valid_transition(current: RideStatus, new: RideStatus) -> bool:
    return new in VALID_TRANSITIONS[current]


class Location(BaseModel):
    """A WGS84 point. NaN is representable so stores can reject it explicitly."""

    lat: float
    lon: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)


class RideRequest(BaseModel):
    """A rider's solicitation for transport, tracked through its status lifecycle."""

    id: str = Field(default_factory=new_ride_id)
    rider_id: str
    pickup_location: Location | None
    destination_location: Location | None
    destination_address: str | None = None
    ride_type: RideType
    status: RideStatus = RideStatus.SEARCHING
    driver_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    fare: float | None = None
    distance_km: float | None = None
    estimated_fare: float | None = None
    estimated_minutes: int | None = None
    accepted_at: datetime | None = None
    arrived_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: CancellationActor | None = None
    cancellation_reason: str | None = None
    rating: int | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_record(self) -> dict[str, Any]:
        """Flatten to a JSON-compatible key/value record."""
        record = self.model_dump(
            mode="json", exclude={"pickup_location", "destination_location"}
        )
        pickup = self.pickup_location
        destination = self.destination_location
        record["pickup_lat"] = pickup.lat if pickup else None
        record["pickup_lon"] = pickup.lon if pickup else None
        record["destination_lat"] = destination.lat if destination else None
        record["destination_lon"] = destination.lon if destination else None
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "RideRequest":
        data = dict(record)
        pickup = (data.pop("pickup_lat", None), data.pop("pickup_lon", None))
        destination = (data.pop("destination_lat", None), data.pop("destination_lon", None))
        data["pickup_location"] = (
            Location(lat=pickup[0], lon=pickup[1]) if None not in pickup else None
        )
        data["destination_location"] = (
            Location(lat=destination[0], lon=destination[1]) if None not in destination else None
        )
        return cls.model_validate(data)
