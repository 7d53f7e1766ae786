from datetime import datetime

from pydantic import BaseModel, Field

from ridedispatch.driver import ActorRole, DriverProfile
from ridedispatch.ride import RideType

from .rides import RideResponse


class DriverRegisterRequest(BaseModel):
    verified: bool = False
    ride_types: list[RideType] = Field(default_factory=list)


class DriverResponse(BaseModel):
    driver_id: str
    verified: bool
    ride_types: list[RideType]
    current_ride_id: str | None
    total_earnings: float
    completed_rides: int
    rating: float
    rating_count: int

    @classmethod
    def from_profile(cls, profile: DriverProfile) -> "DriverResponse":
        return cls(
            driver_id=profile.driver_id,
            verified=profile.verified,
            ride_types=sorted(profile.ride_types, key=lambda rt: rt.value),
            current_ride_id=profile.current_ride_id,
            total_earnings=profile.total_earnings,
            completed_rides=profile.completed_rides,
            rating=profile.rating,
            rating_count=profile.rating_count,
        )


class NearbyDriverResponse(BaseModel):
    driver_id: str
    distance_km: float


class OpenRequestResponse(BaseModel):
    ride: RideResponse
    distance_km: float


class LocationReportRequest(BaseModel):
    lat: float
    lon: float


class LocationResponse(BaseModel):
    actor_id: str
    role: ActorRole
    lat: float
    lon: float
    updated_at: datetime
    next_report_in_seconds: float
