from datetime import datetime

from pydantic import BaseModel, Field

from ridedispatch.fare import FareEstimate
from ridedispatch.lifecycle.state_machine import RideProgress
from ridedispatch.ride import Location, RideRequest, RideStatus, RideType


class Coordinates(BaseModel):
    lat: float
    lon: float

    def to_domain(self) -> Location:
        return Location(lat=self.lat, lon=self.lon)


class RideCreateRequest(BaseModel):
    pickup: Coordinates
    destination: Coordinates
    ride_type: RideType = RideType.CAR
    destination_address: str | None = Field(default=None, max_length=500)


class FareEstimateRequest(BaseModel):
    pickup: Coordinates
    destination: Coordinates
    ride_type: RideType = RideType.CAR


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RatingRequest(BaseModel):
    stars: int


class RideResponse(BaseModel):
    id: str
    rider_id: str
    driver_id: str | None
    status: RideStatus
    ride_type: RideType
    pickup: Coordinates | None
    destination: Coordinates | None
    destination_address: str | None
    estimated_fare: float | None
    estimated_minutes: int | None
    fare: float | None
    distance_km: float | None
    created_at: datetime
    accepted_at: datetime | None
    arrived_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancelled_by: str | None
    cancellation_reason: str | None
    rating: int | None

    @classmethod
    def from_ride(cls, ride: RideRequest) -> "RideResponse":
        pickup = ride.pickup_location
        destination = ride.destination_location
        return cls(
            id=ride.id,
            rider_id=ride.rider_id,
            driver_id=ride.driver_id,
            status=ride.status,
            ride_type=ride.ride_type,
            pickup=Coordinates(lat=pickup.lat, lon=pickup.lon) if pickup else None,
            destination=(
                Coordinates(lat=destination.lat, lon=destination.lon) if destination else None
            ),
            destination_address=ride.destination_address,
            estimated_fare=ride.estimated_fare,
            estimated_minutes=ride.estimated_minutes,
            fare=ride.fare,
            distance_km=ride.distance_km,
            created_at=ride.created_at,
            accepted_at=ride.accepted_at,
            arrived_at=ride.arrived_at,
            started_at=ride.started_at,
            completed_at=ride.completed_at,
            cancelled_at=ride.cancelled_at,
            cancelled_by=ride.cancelled_by,
            cancellation_reason=ride.cancellation_reason,
            rating=ride.rating,
        )


class CandidateResponse(BaseModel):
    driver_id: str
    distance_km: float


class FareEstimateResponse(BaseModel):
    ride_type: RideType
    distance_km: float
    base_fare: float
    per_km_rate: float
    min_fare: float
    total: float
    display_total: float
    currency: str
    estimated_minutes: int

    @classmethod
    def from_estimate(cls, estimate: FareEstimate) -> "FareEstimateResponse":
        quote = estimate.quote
        return cls(
            ride_type=quote.ride_type,
            distance_km=quote.distance_km,
            base_fare=quote.base_fare,
            per_km_rate=quote.per_km_rate,
            min_fare=quote.min_fare,
            total=quote.total,
            display_total=quote.display_total,
            currency=quote.currency,
            estimated_minutes=estimate.estimated_minutes,
        )


class ProgressResponse(BaseModel):
    ride_id: str
    status: RideStatus
    driver_location: Coordinates | None
    driver_updated_at: datetime | None
    distance_to_pickup_km: float | None
    distance_to_destination_km: float | None
    at_pickup: bool
    at_destination: bool
    percent_complete: float

    @classmethod
    def from_progress(cls, progress: RideProgress) -> "ProgressResponse":
        location = None
        if progress.driver_lat is not None and progress.driver_lon is not None:
            location = Coordinates(lat=progress.driver_lat, lon=progress.driver_lon)
        return cls(
            ride_id=progress.ride_id,
            status=progress.status,
            driver_location=location,
            driver_updated_at=progress.driver_updated_at,
            distance_to_pickup_km=progress.distance_to_pickup_km,
            distance_to_destination_km=progress.distance_to_destination_km,
            at_pickup=progress.at_pickup,
            at_destination=progress.at_destination,
            percent_complete=progress.percent_complete,
        )
