"""Builds events from domain records."""

from ridedispatch.events.schemas import DriverStatusEvent, RideEvent, RideEventType
from ridedispatch.ride import RideRequest, utc_now


def ride_event(ride: RideRequest, event_type: RideEventType | None = None) -> RideEvent:
    return RideEvent(
        event_type=event_type or ride.status.to_event_type(),  # type: ignore[arg-type]
        ride_id=ride.id,
        timestamp=utc_now().isoformat(),
        rider_id=ride.rider_id,
        driver_id=ride.driver_id,
        status=ride.status.value,
        ride_type=ride.ride_type.value,
        fare=ride.fare,
        distance_km=ride.distance_km,
        cancelled_by=ride.cancelled_by,
        cancellation_reason=ride.cancellation_reason,
        rating=ride.rating,
        correlation_id=ride.id,
    )


def driver_status_event(
    driver_id: str,
    previous_status: str | None,
    new_status: str,
    current_ride_id: str | None = None,
) -> DriverStatusEvent:
    return DriverStatusEvent(
        driver_id=driver_id,
        timestamp=utc_now().isoformat(),
        previous_status=previous_status,
        new_status=new_status,
        current_ride_id=current_ride_id,
        correlation_id=current_ride_id,
    )
