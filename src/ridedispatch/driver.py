"""Driver, actor and location records."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ridedispatch.ride import RideType, utc_now


class ActorRole(str, Enum):
    RIDER = "rider"
    DRIVER = "driver"


class Availability(str, Enum):
    IDLE = "idle"
    IN_RIDE = "in_ride"
    OFFLINE = "offline"


class Actor(BaseModel):
    """Authenticated caller as supplied by the identity provider."""

    actor_id: str
    role: ActorRole

    @classmethod
    def rider(cls, actor_id: str) -> "Actor":
        return cls(actor_id=actor_id, role=ActorRole.RIDER)

    @classmethod
    def driver(cls, actor_id: str) -> "Actor":
        return cls(actor_id=actor_id, role=ActorRole.DRIVER)


class DriverProfile(BaseModel):
    """Driver assignment record plus the counters kept for earnings history."""

    driver_id: str
    verified: bool = False
    ride_types: set[RideType] = Field(default_factory=set)
    current_ride_id: str | None = None
    total_earnings: float = 0.0
    completed_rides: int = 0
    rating: float = 5.0
    rating_count: int = 0

    @property
    def is_idle(self) -> bool:
        return self.current_ride_id is None

    def serves(self, ride_type: RideType) -> bool:
        return not self.ride_types or ride_type in self.ride_types

    def to_record(self) -> dict[str, Any]:
        record = self.model_dump(mode="json")
        record["ride_types"] = ",".join(sorted(rt.value for rt in self.ride_types))
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "DriverProfile":
        data = dict(record)
        raw = data.get("ride_types") or ""
        if isinstance(raw, str):
            data["ride_types"] = {RideType(v) for v in raw.split(",") if v}
        return cls.model_validate(data)


class DriverLocation(BaseModel):
    """Last report of a driver as held by the geo index."""

    driver_id: str
    lat: float
    lon: float
    updated_at: datetime
    availability: Availability

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ActorLocation(BaseModel):
    """Persistent last-known location of any actor."""

    actor_id: str
    role: ActorRole
    lat: float
    lon: float
    updated_at: datetime = Field(default_factory=utc_now)
    online: bool = True

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
