"""In-memory store backends with per-key compare-and-set."""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from ridedispatch.core.exceptions import (
    ConflictError,
    DuplicateIDError,
    NotFoundError,
    StoreTimeoutError,
    ValidationError,
)
from ridedispatch.driver import ActorLocation, DriverProfile
from ridedispatch.ride import RideRequest, RideStatus
from ridedispatch.store.base import (
    MUTABLE_RIDE_FIELDS,
    DriverStore,
    LocationStore,
    RideListing,
    RideRequestStore,
    validate_ride_locations,
)

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One lock per key, acquired with a deadline."""

    def __init__(self, timeout_seconds: float):
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        if not lock.acquire(timeout=self._timeout):
            raise StoreTimeoutError(
                f"Timed out after {self._timeout}s waiting for {key}",
                details={"key": key, "timeout_seconds": self._timeout},
            )
        try:
            yield
        finally:
            lock.release()


class InMemoryRideStore(RideRequestStore):
    """Thread-safe ride store.

    Records are immutable pydantic snapshots; a compare-and-set builds the
    new record off to the side and swaps it in, so a failed write leaves
    nothing behind.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self._rides: dict[str, RideRequest] = {}
        self._guard = threading.Lock()
        self._key_locks = KeyedLocks(timeout_seconds)

    def create(self, request: RideRequest) -> str:
        validate_ride_locations(request)
        with self._guard:
            if request.id in self._rides:
                raise DuplicateIDError(
                    f"Ride {request.id} already exists", details={"ride_id": request.id}
                )
            self._rides[request.id] = request.model_copy(deep=True)
        return request.id

    def get(self, ride_id: str) -> RideRequest:
        with self._guard:
            ride = self._rides.get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", details={"ride_id": ride_id})
        return ride.model_copy(deep=True)

    def compare_and_set_status(
        self,
        ride_id: str,
        expected_status: RideStatus,
        new_status: RideStatus,
        mutation: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> RideRequest:
        mutation = mutation or {}
        unknown = set(mutation) - MUTABLE_RIDE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be mutated: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        with self._key_locks.hold(ride_id):
            current = self.get(ride_id)
            stale = expected_version is not None and current.version != expected_version
            if current.status != expected_status or stale:
                raise ConflictError(
                    f"Ride {ride_id} is {current.status.value} (v{current.version}), "
                    f"expected {expected_status.value}",
                    details={
                        "ride_id": ride_id,
                        "expected_status": expected_status.value,
                        "actual_status": current.status.value,
                        "actual_version": current.version,
                    },
                )

            data = current.model_dump()
            data.update(mutation)
            data["status"] = new_status
            data["version"] = current.version + 1
            updated = RideRequest.model_validate(data)

            with self._guard:
                self._rides[ride_id] = updated

        logger.debug(
            "Ride %s %s -> %s", ride_id, expected_status.value, new_status.value
        )
        return updated.model_copy(deep=True)

    def list_by_rider(self, rider_id: str) -> RideListing:
        return self._listing(lambda r: r.rider_id == rider_id)

    def list_by_driver(self, driver_id: str) -> RideListing:
        return self._listing(lambda r: r.driver_id == driver_id)

    def list_by_status(self, status: RideStatus) -> RideListing:
        return self._listing(lambda r: r.status == status)

    def _listing(self, predicate: Callable[[RideRequest], bool]) -> RideListing:
        def source() -> Iterator[RideRequest]:
            with self._guard:
                snapshot = [r for r in self._rides.values() if predicate(r)]
            snapshot.sort(key=lambda r: r.created_at, reverse=True)
            for ride in snapshot:
                yield ride.model_copy(deep=True)

        return RideListing(source)


class InMemoryDriverStore(DriverStore):
    def __init__(self, timeout_seconds: float = 5.0):
        self._drivers: dict[str, DriverProfile] = {}
        self._guard = threading.Lock()
        self._key_locks = KeyedLocks(timeout_seconds)

    def register(self, profile: DriverProfile) -> DriverProfile:
        with self._key_locks.hold(profile.driver_id):
            with self._guard:
                existing = self._drivers.get(profile.driver_id)
            if existing is not None:
                profile = existing.model_copy(
                    update={"verified": profile.verified, "ride_types": set(profile.ride_types)}
                )
            with self._guard:
                self._drivers[profile.driver_id] = profile.model_copy(deep=True)
        return profile.model_copy(deep=True)

    def get(self, driver_id: str) -> DriverProfile:
        with self._guard:
            profile = self._drivers.get(driver_id)
        if profile is None:
            raise NotFoundError(
                f"Driver {driver_id} not found", details={"driver_id": driver_id}
            )
        return profile.model_copy(deep=True)

    def compare_and_set_current_ride(
        self, driver_id: str, expected_ride_id: str | None, new_ride_id: str | None
    ) -> DriverProfile:
        with self._key_locks.hold(driver_id):
            current = self.get(driver_id)
            self._check_current_ride(current, expected_ride_id)
            return self._swap(current.model_copy(update={"current_ride_id": new_ride_id}))

    def record_completion(self, driver_id: str, ride_id: str, earnings: float) -> DriverProfile:
        with self._key_locks.hold(driver_id):
            current = self.get(driver_id)
            self._check_current_ride(current, ride_id)
            return self._swap(
                current.model_copy(
                    update={
                        "current_ride_id": None,
                        "total_earnings": current.total_earnings + earnings,
                        "completed_rides": current.completed_rides + 1,
                    }
                )
            )

    def record_rating(self, driver_id: str, stars: int) -> DriverProfile:
        with self._key_locks.hold(driver_id):
            current = self.get(driver_id)
            count = current.rating_count + 1
            average = (current.rating * current.rating_count + stars) / count
            return self._swap(
                current.model_copy(update={"rating": average, "rating_count": count})
            )

    def _swap(self, updated: DriverProfile) -> DriverProfile:
        with self._guard:
            self._drivers[updated.driver_id] = updated
        return updated.model_copy(deep=True)

    @staticmethod
    def _check_current_ride(current: DriverProfile, expected_ride_id: str | None) -> None:
        if current.current_ride_id != expected_ride_id:
            raise ConflictError(
                f"Driver {current.driver_id} is bound to {current.current_ride_id}, "
                f"expected {expected_ride_id}",
                details={
                    "driver_id": current.driver_id,
                    "expected_ride_id": expected_ride_id,
                    "actual_ride_id": current.current_ride_id,
                },
            )


class InMemoryLocationStore(LocationStore):
    def __init__(self) -> None:
        self._locations: dict[str, ActorLocation] = {}
        self._lock = threading.Lock()

    def save(self, location: ActorLocation) -> None:
        with self._lock:
            current = self._locations.get(location.actor_id)
            if current is not None and location.updated_at < current.updated_at:
                return
            self._locations[location.actor_id] = location.model_copy()

    def get(self, actor_id: str) -> ActorLocation | None:
        with self._lock:
            location = self._locations.get(actor_id)
        return location.model_copy() if location else None

    def mark_offline(self, actor_id: str) -> None:
        with self._lock:
            current = self._locations.get(actor_id)
            if current is not None:
                self._locations[actor_id] = current.model_copy(update={"online": False})
