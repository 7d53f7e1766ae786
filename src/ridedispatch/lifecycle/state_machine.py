"""Ride lifecycle after assignment: arrival, trip, completion and cancellation."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ridedispatch.core.exceptions import (
    AlreadyTerminalError,
    ConflictError,
    DispatchError,
    NotInProximityError,
    PermissionDeniedError,
    ValidationError,
)
from ridedispatch.core.retry import RetryConfig, with_retry_sync
from ridedispatch.dispatch_logging import log_ride_context, note_ride_status
from ridedispatch.driver import Actor, ActorRole
from ridedispatch.events.bus import EventBus
from ridedispatch.events.factory import ride_event
from ridedispatch.fare import FareCalculator
from ridedispatch.geo.distance import haversine_distance_km, is_within_proximity
from ridedispatch.geo.geo_index import GeoIndex
from ridedispatch.matching.assignment import mark_idle, release_driver
from ridedispatch.metrics import ride_transitions
from ridedispatch.ride import (
    Location,
    RideRequest,
    RideStatus,
    is_valid_transition,
    utc_now,
)
from ridedispatch.settings import DispatchSettings
from ridedispatch.store.base import DriverStore, LocationStore, RideRequestStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RideProgress:
    """Snapshot of where the assigned driver is relative to the ride."""

    ride_id: str
    status: RideStatus
    driver_lat: float | None
    driver_lon: float | None
    driver_updated_at: datetime | None
    distance_to_pickup_km: float | None
    distance_to_destination_km: float | None
    at_pickup: bool
    at_destination: bool
    percent_complete: float


class RideStateMachine:
    """Applies driver and rider actions to accepted rides.

    Every transition is a compare-and-set against the status the action
    expects, so two concurrent actions on the same ride cannot both win.
    Assignment itself belongs to DispatchEngine.accept.
    """

    def __init__(
        self,
        rides: RideRequestStore,
        drivers: DriverStore,
        locations: LocationStore,
        geo_index: GeoIndex,
        fare_calculator: FareCalculator,
        event_bus: EventBus | None = None,
        settings: DispatchSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._rides = rides
        self._drivers = drivers
        self._locations = locations
        self._geo_index = geo_index
        self._fare_calculator = fare_calculator
        self._event_bus = event_bus
        self._settings = settings or DispatchSettings()
        self._clock = clock
        self._retry = retry_config or RetryConfig()
        self._sleep = sleep

    def mark_arrived(self, ride_id: str, actor: Actor) -> RideRequest:
        """accepted -> arrived, by the assigned driver."""
        with log_ride_context(ride_id, actor):
            ride = self._load_for_driver(ride_id, actor)
            if self._settings.enforce_proximity and ride.pickup_location is not None:
                self._require_proximity(actor.actor_id, ride.pickup_location, "pickup")
            return self._advance(
                ride, RideStatus.ACCEPTED, RideStatus.ARRIVED, {"arrived_at": self._clock()}
            )

    def start_ride(self, ride_id: str, actor: Actor) -> RideRequest:
        """arrived -> in_progress, by the assigned driver."""
        with log_ride_context(ride_id, actor):
            ride = self._load_for_driver(ride_id, actor)
            return self._advance(
                ride, RideStatus.ARRIVED, RideStatus.IN_PROGRESS, {"started_at": self._clock()}
            )

    def complete_ride(self, ride_id: str, actor: Actor) -> RideRequest:
        """in_progress -> completed; prices the ride and frees the driver.

        The fare is computed from the great-circle distance between pickup
        and destination with the fare table in force at completion time.

        Crediting the driver is a second write, retried on transient errors.
        If it still fails the ride goes back to in_progress with the driver
        still bound, and the error is re-raised.
        """
        with log_ride_context(ride_id, actor):
            ride = self._load_for_driver(ride_id, actor)
            if (
                self._settings.enforce_proximity
                and ride.destination_location is not None
            ):
                self._require_proximity(
                    actor.actor_id, ride.destination_location, "destination"
                )

            distance_km = self._trip_distance_km(ride)
            fare = self._fare_calculator.fare(ride.ride_type, distance_km)
            completed = self._advance(
                ride,
                RideStatus.IN_PROGRESS,
                RideStatus.COMPLETED,
                {"completed_at": self._clock(), "fare": fare, "distance_km": distance_km},
                announce=False,
            )

            try:
                with_retry_sync(
                    lambda: self._drivers.record_completion(actor.actor_id, ride_id, fare),
                    self._retry,
                    operation_name=f"credit driver {actor.actor_id} for ride {ride_id}",
                    sleep=self._sleep,
                )
            except DispatchError:
                logger.exception(
                    "Driver %s could not be credited for ride %s", actor.actor_id, ride_id
                )
                self._undo_completion(completed)
                raise

            mark_idle(self._geo_index, self._event_bus, actor.actor_id)
            ride_transitions.labels(status=RideStatus.COMPLETED.value).inc()
            self._publish(completed)
            logger.info("Ride %s completed: %.2f km, fare %.2f", ride_id, distance_km, fare)
            return completed

    def cancel(self, ride_id: str, actor: Actor, reason: str | None = None) -> RideRequest:
        """Cancel from any non-terminal status, by the rider or the assigned driver.

        A cancel never loses to an ordinary transition: when the status
        moves underneath it, it re-reads and tries again.

        Raises:
            AlreadyTerminalError: The ride is completed or already cancelled
            PermissionDeniedError: The actor is not a party to the ride
            ConflictError: The status kept changing for max_cancel_attempts
        """
        with log_ride_context(ride_id, actor):
            for attempt in range(self._settings.max_cancel_attempts):
                ride = self._rides.get(ride_id)
                note_ride_status(ride.status)
                self._check_party(ride, actor)
                if ride.is_terminal:
                    raise AlreadyTerminalError(
                        f"Ride {ride_id} is already {ride.status.value}",
                        details={"ride_id": ride_id, "status": ride.status.value},
                    )
                try:
                    cancelled = self._rides.compare_and_set_status(
                        ride_id,
                        ride.status,
                        RideStatus.CANCELLED,
                        {
                            "cancelled_at": self._clock(),
                            "cancelled_by": actor.role.value,
                            "cancellation_reason": reason,
                        },
                    )
                    break
                except ConflictError:
                    logger.debug(
                        "Ride %s changed during cancel (attempt %d), retrying",
                        ride_id,
                        attempt + 1,
                    )
            else:
                raise ConflictError(
                    f"Ride {ride_id} kept changing; cancel gave up",
                    details={
                        "ride_id": ride_id,
                        "attempts": self._settings.max_cancel_attempts,
                    },
                )

            note_ride_status(RideStatus.CANCELLED)
            if cancelled.driver_id is not None:
                release_driver(
                    self._drivers,
                    self._geo_index,
                    self._event_bus,
                    cancelled.driver_id,
                    ride_id,
                )

            ride_transitions.labels(status=RideStatus.CANCELLED.value).inc()
            self._publish(cancelled)
            logger.info(
                "Ride %s cancelled by %s: %s", ride_id, actor.role.value, reason or "no reason"
            )
            return cancelled

    def rate_driver(self, ride_id: str, actor: Actor, stars: int) -> RideRequest:
        """Record the rider's 1-5 rating of a completed ride, once.

        The rating is claimed on the ride first. If the driver's average
        cannot be updated the claim is withdrawn, so the rider may retry.
        """
        if not 1 <= stars <= 5:
            raise ValidationError(
                f"Rating must be between 1 and 5, got {stars}", details={"stars": stars}
            )

        with log_ride_context(ride_id, actor):
            ride = self._rides.get(ride_id)
            note_ride_status(ride.status)
            if actor.role != ActorRole.RIDER or actor.actor_id != ride.rider_id:
                raise PermissionDeniedError(
                    "Only the ride's rider may rate it",
                    details={"ride_id": ride_id, "actor_id": actor.actor_id},
                )
            if ride.status != RideStatus.COMPLETED:
                raise ConflictError(
                    f"Ride {ride_id} is {ride.status.value}; only completed rides are rated",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            if ride.rating is not None or ride.driver_id is None:
                raise ConflictError(
                    f"Ride {ride_id} was already rated",
                    details={"ride_id": ride_id, "rating": ride.rating},
                )

            rated = self._rides.compare_and_set_status(
                ride_id,
                RideStatus.COMPLETED,
                RideStatus.COMPLETED,
                {"rating": stars},
                expected_version=ride.version,
            )
            try:
                self._drivers.record_rating(ride.driver_id, stars)
            except DispatchError:
                logger.exception("Rating for ride %s could not be applied to driver", ride_id)
                try:
                    self._rides.compare_and_set_status(
                        ride_id,
                        RideStatus.COMPLETED,
                        RideStatus.COMPLETED,
                        {"rating": None},
                        expected_version=rated.version,
                    )
                except DispatchError:
                    logger.exception("Rating claim on ride %s could not be withdrawn", ride_id)
                raise
            self._publish(rated, "ride.rated")
            logger.info("Ride %s rated %d", ride_id, stars)
            return rated

    def progress(self, ride_id: str, actor: Actor | None = None) -> RideProgress:
        """Where the driver is relative to pickup and destination.

        When an actor is given it must be the ride's rider or driver.
        """
        ride = self._rides.get(ride_id)
        if actor is not None:
            self._check_party(ride, actor)

        position = self._driver_position(ride.driver_id)
        pickup = ride.pickup_location
        destination = ride.destination_location
        to_pickup = to_destination = None
        at_pickup = at_destination = False
        if position is not None and pickup is not None and destination is not None:
            lat, lon, _ = position
            threshold = self._settings.proximity_threshold_m
            to_pickup = haversine_distance_km(lat, lon, pickup.lat, pickup.lon)
            to_destination = haversine_distance_km(lat, lon, destination.lat, destination.lon)
            at_pickup = is_within_proximity(lat, lon, pickup.lat, pickup.lon, threshold)
            at_destination = is_within_proximity(
                lat, lon, destination.lat, destination.lon, threshold
            )

        return RideProgress(
            ride_id=ride.id,
            status=ride.status,
            driver_lat=position[0] if position else None,
            driver_lon=position[1] if position else None,
            driver_updated_at=position[2] if position else None,
            distance_to_pickup_km=to_pickup,
            distance_to_destination_km=to_destination,
            at_pickup=at_pickup,
            at_destination=at_destination,
            percent_complete=self._percent_complete(ride, to_destination),
        )

    def _advance(
        self,
        ride: RideRequest,
        expected: RideStatus,
        new: RideStatus,
        mutation: dict[str, Any],
        announce: bool = True,
    ) -> RideRequest:
        note_ride_status(ride.status)
        if ride.is_terminal:
            raise AlreadyTerminalError(
                f"Ride {ride.id} is already {ride.status.value}",
                details={"ride_id": ride.id, "status": ride.status.value},
            )
        if ride.status != expected or not is_valid_transition(expected, new):
            raise ConflictError(
                f"Cannot move ride {ride.id} from {ride.status.value} to {new.value}",
                details={
                    "ride_id": ride.id,
                    "status": ride.status.value,
                    "requested": new.value,
                },
            )

        try:
            updated = self._rides.compare_and_set_status(ride.id, expected, new, mutation)
        except ConflictError as e:
            actual = e.details.get("actual_status")
            if actual in (RideStatus.COMPLETED.value, RideStatus.CANCELLED.value):
                raise AlreadyTerminalError(
                    f"Ride {ride.id} is already {actual}",
                    details={"ride_id": ride.id, "status": actual},
                ) from e
            raise

        note_ride_status(new)
        if announce:
            ride_transitions.labels(status=new.value).inc()
            self._publish(updated)
        logger.info("Ride %s %s -> %s", ride.id, expected.value, new.value)
        return updated

    def _undo_completion(self, completed: RideRequest) -> None:
        try:
            self._rides.compare_and_set_status(
                completed.id,
                RideStatus.COMPLETED,
                RideStatus.IN_PROGRESS,
                {"completed_at": None, "fare": None, "distance_km": None},
                expected_version=completed.version,
            )
        except DispatchError:
            logger.exception(
                "Ride %s could not be returned to in_progress; driver %s is still bound",
                completed.id,
                completed.driver_id,
            )
            return
        note_ride_status(RideStatus.IN_PROGRESS)
        logger.warning("Ride %s returned to in_progress", completed.id)

    def _load_for_driver(self, ride_id: str, actor: Actor) -> RideRequest:
        ride = self._rides.get(ride_id)
        if actor.role != ActorRole.DRIVER or ride.driver_id != actor.actor_id:
            raise PermissionDeniedError(
                f"Actor {actor.actor_id} is not the driver assigned to ride {ride_id}",
                details={"ride_id": ride_id, "actor_id": actor.actor_id},
            )
        return ride

    @staticmethod
    def _check_party(ride: RideRequest, actor: Actor) -> None:
        if actor.role == ActorRole.RIDER and actor.actor_id == ride.rider_id:
            return
        if actor.role == ActorRole.DRIVER and actor.actor_id == ride.driver_id:
            return
        raise PermissionDeniedError(
            f"Actor {actor.actor_id} is not a party to ride {ride.id}",
            details={"ride_id": ride.id, "actor_id": actor.actor_id},
        )

    def _require_proximity(self, driver_id: str, target: Location, label: str) -> None:
        position = self._driver_position(driver_id)
        threshold = self._settings.proximity_threshold_m
        if position is None:
            raise NotInProximityError(
                f"No location reported for driver {driver_id}",
                details={"driver_id": driver_id, "target": label},
            )
        lat, lon, _ = position
        if not is_within_proximity(lat, lon, target.lat, target.lon, threshold):
            raise NotInProximityError(
                f"Driver {driver_id} is not within {threshold:.0f} m of the {label}",
                details={
                    "driver_id": driver_id,
                    "target": label,
                    "distance_m": round(
                        haversine_distance_km(lat, lon, target.lat, target.lon) * 1000, 1
                    ),
                },
            )

    def _driver_position(self, driver_id: str | None) -> tuple[float, float, datetime] | None:
        if driver_id is None:
            return None
        indexed = self._geo_index.get(driver_id)
        if indexed is not None:
            return indexed.lat, indexed.lon, indexed.updated_at
        stored = self._locations.get(driver_id)
        if stored is not None:
            return stored.lat, stored.lon, stored.updated_at
        return None

    @staticmethod
    def _trip_distance_km(ride: RideRequest) -> float:
        pickup = ride.pickup_location
        destination = ride.destination_location
        if pickup is None or destination is None:
            return 0.0
        return haversine_distance_km(pickup.lat, pickup.lon, destination.lat, destination.lon)

    def _percent_complete(self, ride: RideRequest, to_destination: float | None) -> float:
        if ride.status == RideStatus.COMPLETED:
            return 100.0
        if ride.status != RideStatus.IN_PROGRESS or to_destination is None:
            return 0.0
        total = self._trip_distance_km(ride)
        if total <= 0:
            return 100.0
        percent = 100.0 - to_destination / total * 100.0
        return min(max(percent, 0.0), 100.0)

    def _publish(self, ride: RideRequest, event_type: str | None = None) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(ride_event(ride, event_type))  # type: ignore[arg-type]
