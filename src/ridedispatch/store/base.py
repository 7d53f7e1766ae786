"""Storage contracts for rides, drivers and actor locations.

Both backends (in-memory and SQL) implement these interfaces; callers
depend only on the abstract classes.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from ridedispatch.core.exceptions import InvalidLocationError
from ridedispatch.driver import ActorLocation, DriverProfile
from ridedispatch.ride import Location, RideRequest, RideStatus

# Fields a compare-and-set may update alongside the status
MUTABLE_RIDE_FIELDS = frozenset(
    {
        "driver_id",
        "destination_address",
        "fare",
        "distance_km",
        "estimated_fare",
        "estimated_minutes",
        "accepted_at",
        "arrived_at",
        "started_at",
        "completed_at",
        "cancelled_at",
        "cancelled_by",
        "cancellation_reason",
        "rating",
    }
)


class RideListing(Iterable[RideRequest]):
    """Lazy, finite, restartable sequence of rides.

    Each iteration re-runs the underlying query, so a listing can be
    iterated again to observe fresh state.
    """

    def __init__(self, source: Callable[[], Iterator[RideRequest]]):
        self._source = source

    def __iter__(self) -> Iterator[RideRequest]:
        return self._source()


def validate_ride_locations(request: RideRequest) -> None:
    for name in ("pickup_location", "destination_location"):
        location: Location | None = getattr(request, name)
        if location is None:
            raise InvalidLocationError(f"{name} is required", details={"field": name})
        if location.lat is None or location.lon is None:
            raise InvalidLocationError(f"{name} is incomplete", details={"field": name})
        if math.isnan(location.lat) or math.isnan(location.lon):
            raise InvalidLocationError(f"{name} contains NaN", details={"field": name})


class RideRequestStore(ABC):
    """Durable record of ride requests and their status transitions."""

    @abstractmethod
    def create(self, request: RideRequest) -> str:
        """Persist a new request and return its id.

        Raises:
            DuplicateIDError: If a request with the same id exists
            InvalidLocationError: If a coordinate is missing or NaN
        """

    @abstractmethod
    def get(self, ride_id: str) -> RideRequest:
        """Raises NotFoundError for unknown ids."""

    @abstractmethod
    def compare_and_set_status(
        self,
        ride_id: str,
        expected_status: RideStatus,
        new_status: RideStatus,
        mutation: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> RideRequest:
        """Atomically move a ride from expected_status to new_status.

        mutation holds extra field updates applied in the same write. When
        expected_version is given the stored version must match as well,
        which lets callers guard writes that do not change the status.

        Raises:
            NotFoundError: If the ride does not exist
            ConflictError: If the stored status differs from expected_status;
                nothing is written in that case
            StoreTimeoutError: If the write could not be made in time
        """

    @abstractmethod
    def list_by_rider(self, rider_id: str) -> RideListing:
        """Rides of a rider, newest first."""

    @abstractmethod
    def list_by_driver(self, driver_id: str) -> RideListing:
        """Rides bound to a driver, newest first."""

    @abstractmethod
    def list_by_status(self, status: RideStatus) -> RideListing:
        """Rides in a given status, newest first."""


class DriverStore(ABC):
    """Driver profiles and the per-driver assignment field."""

    @abstractmethod
    def register(self, profile: DriverProfile) -> DriverProfile:
        """Create or update a profile; assignment and counters are preserved."""

    @abstractmethod
    def get(self, driver_id: str) -> DriverProfile:
        """Raises NotFoundError for unknown drivers."""

    @abstractmethod
    def compare_and_set_current_ride(
        self, driver_id: str, expected_ride_id: str | None, new_ride_id: str | None
    ) -> DriverProfile:
        """Atomically swap current_ride_id; ConflictError on mismatch."""

    @abstractmethod
    def record_completion(self, driver_id: str, ride_id: str, earnings: float) -> DriverProfile:
        """Release ride_id and add earnings and one trip in a single write."""

    @abstractmethod
    def record_rating(self, driver_id: str, stars: int) -> DriverProfile:
        """Fold a rating into the driver's running average."""


class LocationStore(ABC):
    """Last-known location of every actor."""

    @abstractmethod
    def save(self, location: ActorLocation) -> None:
        """Overwrite unless the stored report is newer."""

    @abstractmethod
    def get(self, actor_id: str) -> ActorLocation | None: ...

    @abstractmethod
    def mark_offline(self, actor_id: str) -> None: ...
