"""Dispatch: surfacing open requests to nearby drivers and arbitrating accepts."""

import logging
from collections.abc import Callable
from datetime import datetime

from ridedispatch.core.exceptions import (
    AlreadyTakenError,
    AlreadyTerminalError,
    AssignmentFailedError,
    ConflictError,
    DispatchError,
    DriverBusyError,
    NotFoundError,
    PermissionDeniedError,
)
from ridedispatch.dispatch_logging import log_ride_context, note_ride_status
from ridedispatch.driver import Actor, Availability, DriverProfile
from ridedispatch.events.bus import EventBus
from ridedispatch.events.factory import ride_event
from ridedispatch.geo.distance import haversine_distance_km, validate_coordinates
from ridedispatch.geo.geo_index import GeoIndex
from ridedispatch.matching.assignment import mark_idle, mark_in_ride, release_driver
from ridedispatch.metrics import accept_outcomes, ride_transitions
from ridedispatch.ride import TERMINAL_STATUSES, RideRequest, RideStatus, RideType, utc_now
from ridedispatch.settings import DispatchSettings
from ridedispatch.store.base import DriverStore, LocationStore, RideRequestStore

logger = logging.getLogger(__name__)


class DispatchEngine:
    """Brokers request visibility and enforces single assignment.

    A ride is bound to a driver in two compare-and-set steps: the ride's
    status (searching -> accepted) and then the driver's current ride
    (None -> ride). Losing the first step means another driver won;
    failing the second rolls the ride back to searching.
    """

    def __init__(
        self,
        rides: RideRequestStore,
        drivers: DriverStore,
        locations: LocationStore,
        geo_index: GeoIndex,
        event_bus: EventBus | None = None,
        settings: DispatchSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rides = rides
        self._drivers = drivers
        self._locations = locations
        self._geo_index = geo_index
        self._event_bus = event_bus
        self._settings = settings or DispatchSettings()
        self._clock = clock

    def find_candidates(
        self, request_id: str, radius_km: float | None = None
    ) -> list[tuple[str, float]]:
        """Idle drivers that could take the request, nearest first.

        The result is a snapshot; nothing is reserved.
        """
        ride = self._rides.get(request_id)
        if ride.status != RideStatus.SEARCHING or ride.pickup_location is None:
            return []

        radius = radius_km if radius_km is not None else self._settings.candidate_radius_km
        nearby = self._geo_index.query_nearby(
            ride.pickup_location.lat,
            ride.pickup_location.lon,
            radius_km=radius,
            availability_filter=Availability.IDLE,
            now=self._clock(),
        )
        return [
            (driver_id, distance)
            for driver_id, distance in nearby
            if self._is_eligible(driver_id, ride.ride_type)
        ]

    def find_open_requests(
        self, driver_id: str, radius_km: float | None = None
    ) -> list[tuple[RideRequest, float]]:
        """Searching requests around a driver, nearest pickup first."""
        profile = self._drivers.get(driver_id)
        if not profile.verified or not profile.is_idle:
            return []

        position = self._geo_index.get(driver_id) or self._locations.get(driver_id)
        if position is None:
            return []

        radius = radius_km if radius_km is not None else self._settings.open_request_radius_km
        open_requests: list[tuple[RideRequest, float]] = []
        for ride in self._rides.list_by_status(RideStatus.SEARCHING):
            if ride.pickup_location is None or not profile.serves(ride.ride_type):
                continue
            distance = haversine_distance_km(
                position.lat, position.lon, ride.pickup_location.lat, ride.pickup_location.lon
            )
            if distance <= radius:
                open_requests.append((ride, distance))

        open_requests.sort(key=lambda item: (item[1], item[0].id))
        return open_requests

    def find_nearby_drivers(
        self, lat: float, lon: float, radius_km: float | None = None
    ) -> list[tuple[str, float]]:
        """Rider-side view of idle, verified drivers around a point."""
        validate_coordinates(lat, lon)
        radius = radius_km if radius_km is not None else self._settings.candidate_radius_km
        nearby = self._geo_index.query_nearby(
            lat, lon, radius_km=radius, availability_filter=Availability.IDLE, now=self._clock()
        )
        return [(d, distance) for d, distance in nearby if self._is_eligible(d, None)]

    def accept(self, request_id: str, driver_id: str) -> RideRequest:
        """Bind driver_id to the request; the only path that assigns a driver.

        Raises:
            AlreadyTakenError: Another driver won the request
            AlreadyTerminalError: The request was cancelled
            AssignmentFailedError: The driver could not be bound; the
                request is back in searching
            DriverBusyError: The driver already has a ride
            PermissionDeniedError: The driver is unverified or does not
                serve the ride type
        """
        with log_ride_context(request_id, Actor.driver(driver_id)):
            profile = self._drivers.get(driver_id)
            ride = self._rides.get(request_id)
            note_ride_status(ride.status)
            self._check_can_accept(profile, ride)

            try:
                self._rides.compare_and_set_status(
                    request_id,
                    RideStatus.SEARCHING,
                    RideStatus.ACCEPTED,
                    {"driver_id": driver_id, "accepted_at": self._clock()},
                )
            except ConflictError as e:
                actual = e.details.get("actual_status")
                if actual is not None and RideStatus(actual) in TERMINAL_STATUSES:
                    accept_outcomes.labels(outcome="already_terminal").inc()
                    raise AlreadyTerminalError(
                        f"Ride {request_id} is already {actual}",
                        details={"ride_id": request_id, "status": actual},
                    ) from e
                accept_outcomes.labels(outcome="already_taken").inc()
                logger.info("Driver %s lost ride %s", driver_id, request_id)
                raise AlreadyTakenError(
                    f"Ride {request_id} was taken by another driver",
                    details={"ride_id": request_id, "status": actual},
                ) from e

            try:
                self._drivers.compare_and_set_current_ride(driver_id, None, request_id)
            except DispatchError as e:
                rolled_back = self._roll_back(request_id, driver_id)
                accept_outcomes.labels(outcome="assignment_failed").inc()
                raise AssignmentFailedError(
                    f"Could not bind driver {driver_id} to ride {request_id}: {e.message}",
                    details={
                        "ride_id": request_id,
                        "driver_id": driver_id,
                        "rolled_back": rolled_back,
                        "cause": e.code,
                    },
                ) from e

            mark_in_ride(self._geo_index, self._event_bus, driver_id, request_id)

            # A cancellation may have landed between the two writes
            current = self._rides.get(request_id)
            note_ride_status(current.status)
            if current.status == RideStatus.CANCELLED:
                if not release_driver(
                    self._drivers, self._geo_index, self._event_bus, driver_id, request_id
                ):
                    # The canceller released the driver before IN_RIDE was set
                    self._restore_idle(driver_id)
                accept_outcomes.labels(outcome="already_terminal").inc()
                raise AlreadyTerminalError(
                    f"Ride {request_id} was cancelled during assignment",
                    details={"ride_id": request_id, "status": current.status.value},
                )

            accept_outcomes.labels(outcome="accepted").inc()
            ride_transitions.labels(status=RideStatus.ACCEPTED.value).inc()
            self._publish(current)
            logger.info("Driver %s accepted ride %s", driver_id, request_id)
            return current

    def _check_can_accept(self, profile: DriverProfile, ride: RideRequest) -> None:
        if not profile.verified:
            raise PermissionDeniedError(
                f"Driver {profile.driver_id} is not verified",
                details={"driver_id": profile.driver_id},
            )
        if not profile.serves(ride.ride_type):
            raise PermissionDeniedError(
                f"Driver {profile.driver_id} does not serve {ride.ride_type.value} rides",
                details={"driver_id": profile.driver_id, "ride_type": ride.ride_type.value},
            )
        if profile.current_ride_id is not None:
            raise DriverBusyError(
                f"Driver {profile.driver_id} is already on ride {profile.current_ride_id}",
                details={
                    "driver_id": profile.driver_id,
                    "current_ride_id": profile.current_ride_id,
                },
            )

    def _roll_back(self, request_id: str, driver_id: str) -> bool:
        """Compensate a failed bind: accepted -> searching, driver cleared."""
        try:
            rolled = self._rides.compare_and_set_status(
                request_id,
                RideStatus.ACCEPTED,
                RideStatus.SEARCHING,
                {"driver_id": None, "accepted_at": None},
            )
        except ConflictError:
            logger.warning(
                "Ride %s moved on before rollback of driver %s", request_id, driver_id
            )
            return False
        except DispatchError:
            logger.exception("Rollback of ride %s failed", request_id)
            return False

        logger.warning("Rolled ride %s back to searching after failed bind", request_id)
        self._publish(rolled, "ride.assignment_rolled_back")
        return True

    def _restore_idle(self, driver_id: str) -> None:
        profile = self._drivers.get(driver_id)
        if profile.current_ride_id is None:
            mark_idle(self._geo_index, self._event_bus, driver_id)

    def _is_eligible(self, driver_id: str, ride_type: RideType | None) -> bool:
        try:
            profile = self._drivers.get(driver_id)
        except NotFoundError:
            return False
        if not profile.verified or not profile.is_idle:
            return False
        return ride_type is None or profile.serves(ride_type)

    def _publish(self, ride: RideRequest, event_type: str | None = None) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(ride_event(ride, event_type))  # type: ignore[arg-type]
