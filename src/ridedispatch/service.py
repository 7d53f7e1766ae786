"""Wiring of the dispatch core and the rider-facing operations."""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from ridedispatch.core.exceptions import ConflictError
from ridedispatch.driver import DriverProfile
from ridedispatch.events.bus import EventBus
from ridedispatch.events.factory import ride_event
from ridedispatch.fare import FareCalculator, FareEstimate
from ridedispatch.geo.distance import validate_coordinates
from ridedispatch.geo.geo_index import GeoIndex
from ridedispatch.lifecycle.state_machine import RideStateMachine
from ridedispatch.matching.dispatch_engine import DispatchEngine
from ridedispatch.metrics import ride_transitions
from ridedispatch.ride import Location, RideRequest, RideStatus, RideType, utc_now
from ridedispatch.settings import Settings
from ridedispatch.store import Stores, build_stores
from ridedispatch.store.memory import KeyedLocks
from ridedispatch.telemetry.location_telemetry import LocationTelemetry
from ridedispatch.telemetry.sweeper import StalenessSweeper

logger = logging.getLogger(__name__)


class RideService:
    """Entry point used by the HTTP layer.

    Owns the shared components and exposes the rider operations that do
    not belong to a single component (requesting rides, listings,
    estimates, driver onboarding).
    """

    def __init__(
        self,
        stores: Stores,
        settings: Settings,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.stores = stores
        self.event_bus = event_bus or EventBus()
        self._clock = clock

        self.geo_index = GeoIndex(
            h3_resolution=settings.dispatch.h3_resolution,
            staleness_seconds=settings.telemetry.staleness_seconds,
        )
        self.fare_calculator = FareCalculator.from_settings(settings.fare)
        self.dispatch = DispatchEngine(
            stores.rides,
            stores.drivers,
            stores.locations,
            self.geo_index,
            self.event_bus,
            settings.dispatch,
            clock,
        )
        self.lifecycle = RideStateMachine(
            stores.rides,
            stores.drivers,
            stores.locations,
            self.geo_index,
            self.fare_calculator,
            self.event_bus,
            settings.dispatch,
            clock,
        )
        self.telemetry = LocationTelemetry(
            stores.locations,
            stores.drivers,
            self.geo_index,
            settings.telemetry,
            clock,
        )
        self.sweeper = StalenessSweeper(
            self.telemetry, settings.telemetry.sweep_interval_seconds
        )
        self._rider_locks = KeyedLocks(settings.store.timeout_seconds)

    def request_ride(
        self,
        rider_id: str,
        pickup: Location,
        destination: Location,
        ride_type: RideType,
        destination_address: str | None = None,
    ) -> RideRequest:
        """Create a searching request priced with an up-front estimate.

        The one-active-ride check and the insert run under a per-rider
        lock. The lock is local to this process; services sharing a SQL
        database do not see each other's locks.

        Raises:
            InvalidCoordinateError: If either point is not a valid coordinate
            ConflictError: If the rider already has an active ride
            StoreTimeoutError: If another request by the same rider holds
                the lock past the store timeout
        """
        validate_coordinates(pickup.lat, pickup.lon)
        validate_coordinates(destination.lat, destination.lon)
        estimate = self.fare_calculator.estimate(ride_type, pickup, destination)

        with self._rider_locks.hold(rider_id):
            active = self._active_ride(self.stores.rides.list_by_rider(rider_id))
            if active is not None:
                raise ConflictError(
                    f"Rider {rider_id} already has an active ride {active.id}",
                    details={"rider_id": rider_id, "ride_id": active.id},
                )

            ride = RideRequest(
                rider_id=rider_id,
                pickup_location=pickup,
                destination_location=destination,
                destination_address=destination_address,
                ride_type=ride_type,
                created_at=self._clock(),
                estimated_fare=estimate.quote.display_total,
                estimated_minutes=estimate.estimated_minutes,
            )
            self.stores.rides.create(ride)

        ride_transitions.labels(status=RideStatus.SEARCHING.value).inc()
        self.event_bus.publish(ride_event(ride))
        logger.info(
            "Rider %s requested %s ride %s (est. %.2f)",
            rider_id,
            ride_type.value,
            ride.id,
            estimate.quote.display_total,
        )
        return ride

    def estimate(
        self, ride_type: RideType, pickup: Location, destination: Location
    ) -> FareEstimate:
        validate_coordinates(pickup.lat, pickup.lon)
        validate_coordinates(destination.lat, destination.lon)
        return self.fare_calculator.estimate(ride_type, pickup, destination)

    def get_ride(self, ride_id: str) -> RideRequest:
        return self.stores.rides.get(ride_id)

    def rides_for_rider(self, rider_id: str) -> list[RideRequest]:
        return list(self.stores.rides.list_by_rider(rider_id))

    def rides_for_driver(self, driver_id: str) -> list[RideRequest]:
        return list(self.stores.rides.list_by_driver(driver_id))

    def register_driver(
        self, driver_id: str, verified: bool, ride_types: set[RideType] | None = None
    ) -> DriverProfile:
        profile = self.stores.drivers.register(
            DriverProfile(driver_id=driver_id, verified=verified, ride_types=ride_types or set())
        )
        logger.info("Registered driver %s (verified=%s)", driver_id, verified)
        return profile

    def get_driver(self, driver_id: str) -> DriverProfile:
        return self.stores.drivers.get(driver_id)

    def start(self) -> None:
        self.sweeper.start()

    def stop(self) -> None:
        self.sweeper.stop()

    @staticmethod
    def _active_ride(rides: Iterable[RideRequest]) -> RideRequest | None:
        return next((ride for ride in rides if not ride.is_terminal), None)


def create_service(settings: Settings) -> RideService:
    """Build a service over the store backend selected by settings."""
    return RideService(build_stores(settings.store), settings)
