"""SQLAlchemy store backends.

Compare-and-set is a conditional UPDATE whose WHERE clause carries the
expected value; a zero rowcount means the race was lost (or the row is
missing) and the transaction is rolled back.
"""

import logging
from collections.abc import Iterator
from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ridedispatch.core.exceptions import (
    ConflictError,
    DuplicateIDError,
    NotFoundError,
    ValidationError,
)
from ridedispatch.driver import ActorLocation as ActorLocationDomain
from ridedispatch.driver import ActorRole, DriverProfile
from ridedispatch.ride import Location, RideRequest, RideStatus, RideType

from .base import (
    MUTABLE_RIDE_FIELDS,
    DriverStore,
    LocationStore,
    RideListing,
    RideRequestStore,
    validate_ride_locations,
)
from .schema import ActorLocation, Driver, Ride
from .transaction import transaction, translate_errors

logger = logging.getLogger(__name__)


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SqlRideStore(RideRequestStore):
    """Ride store backed by a relational database."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create(self, request: RideRequest) -> str:
        validate_ride_locations(request)
        record = request.to_record()
        row = Ride(
            id=request.id,
            rider_id=request.rider_id,
            driver_id=request.driver_id,
            status=request.status.value,
            ride_type=request.ride_type.value,
            pickup_lat=record["pickup_lat"],
            pickup_lon=record["pickup_lon"],
            destination_lat=record["destination_lat"],
            destination_lon=record["destination_lon"],
            destination_address=request.destination_address,
            estimated_fare=request.estimated_fare,
            estimated_minutes=request.estimated_minutes,
            version=request.version,
            created_at=request.created_at,
        )
        with translate_errors("create ride"), self._session_factory() as session:
            try:
                with transaction(session):
                    session.add(row)
            except IntegrityError as e:
                raise DuplicateIDError(
                    f"Ride {request.id} already exists", details={"ride_id": request.id}
                ) from e
        return request.id

    def get(self, ride_id: str) -> RideRequest:
        with translate_errors("get ride"), self._session_factory() as session:
            row = session.get(Ride, ride_id)
            if row is None:
                raise NotFoundError(f"Ride {ride_id} not found", details={"ride_id": ride_id})
            return self._to_domain(row)

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

        values = {key: _column_value(value) for key, value in mutation.items()}
        values["status"] = new_status.value
        values["version"] = Ride.version + 1
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id, Ride.status == expected_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if expected_version is not None:
            stmt = stmt.where(Ride.version == expected_version)

        with translate_errors("update ride status"), self._session_factory() as session:
            with transaction(session):
                result = session.execute(stmt)
                row = session.get(Ride, ride_id)
                if row is None:
                    raise NotFoundError(
                        f"Ride {ride_id} not found", details={"ride_id": ride_id}
                    )
                if result.rowcount == 0:  # type: ignore[attr-defined]
                    raise ConflictError(
                        f"Ride {ride_id} is {row.status} (v{row.version}), "
                        f"expected {expected_status.value}",
                        details={
                            "ride_id": ride_id,
                            "expected_status": expected_status.value,
                            "actual_status": row.status,
                            "actual_version": row.version,
                        },
                    )
                updated = self._to_domain(row)

        logger.debug("Ride %s %s -> %s", ride_id, expected_status.value, new_status.value)
        return updated

    def list_by_rider(self, rider_id: str) -> RideListing:
        return self._listing(Ride.rider_id == rider_id)

    def list_by_driver(self, driver_id: str) -> RideListing:
        return self._listing(Ride.driver_id == driver_id)

    def list_by_status(self, status: RideStatus) -> RideListing:
        return self._listing(Ride.status == status.value)

    def _listing(self, criterion: ColumnElement[bool]) -> RideListing:
        stmt = select(Ride).where(criterion).order_by(Ride.created_at.desc(), Ride.id)

        def source() -> Iterator[RideRequest]:
            with translate_errors("list rides"), self._session_factory() as session:
                for row in session.scalars(stmt):
                    yield self._to_domain(row)

        return RideListing(source)

    def _to_domain(self, row: Ride) -> RideRequest:
        """Convert ORM model to domain model."""
        return RideRequest(
            id=row.id,
            rider_id=row.rider_id,
            pickup_location=Location(lat=row.pickup_lat, lon=row.pickup_lon),
            destination_location=Location(lat=row.destination_lat, lon=row.destination_lon),
            destination_address=row.destination_address,
            ride_type=RideType(row.ride_type),
            status=RideStatus(row.status),
            driver_id=row.driver_id,
            created_at=row.created_at,
            fare=row.fare,
            distance_km=row.distance_km,
            estimated_fare=row.estimated_fare,
            estimated_minutes=row.estimated_minutes,
            accepted_at=row.accepted_at,
            arrived_at=row.arrived_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            cancelled_at=row.cancelled_at,
            cancelled_by=row.cancelled_by,  # type: ignore[arg-type]
            cancellation_reason=row.cancellation_reason,
            rating=row.rating,
            version=row.version,
        )


class SqlDriverStore(DriverStore):
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def register(self, profile: DriverProfile) -> DriverProfile:
        ride_types = profile.to_record()["ride_types"]
        with translate_errors("register driver"), self._session_factory() as session:
            with transaction(session):
                row = session.get(Driver, profile.driver_id)
                if row is None:
                    row = Driver(
                        driver_id=profile.driver_id,
                        verified=profile.verified,
                        ride_types=ride_types,
                        current_ride_id=None,
                        total_earnings=0.0,
                        completed_rides=0,
                        rating=5.0,
                        rating_count=0,
                    )
                    session.add(row)
                else:
                    row.verified = profile.verified
                    row.ride_types = ride_types
                session.flush()
                return self._to_domain(row)

    def get(self, driver_id: str) -> DriverProfile:
        with translate_errors("get driver"), self._session_factory() as session:
            row = session.get(Driver, driver_id)
            if row is None:
                raise NotFoundError(
                    f"Driver {driver_id} not found", details={"driver_id": driver_id}
                )
            return self._to_domain(row)

    def compare_and_set_current_ride(
        self, driver_id: str, expected_ride_id: str | None, new_ride_id: str | None
    ) -> DriverProfile:
        return self._conditional_update(
            driver_id, expected_ride_id, {"current_ride_id": new_ride_id}
        )

    def record_completion(self, driver_id: str, ride_id: str, earnings: float) -> DriverProfile:
        return self._conditional_update(
            driver_id,
            ride_id,
            {
                "current_ride_id": None,
                "total_earnings": Driver.total_earnings + earnings,
                "completed_rides": Driver.completed_rides + 1,
            },
        )

    def record_rating(self, driver_id: str, stars: int) -> DriverProfile:
        stmt = (
            update(Driver)
            .where(Driver.driver_id == driver_id)
            .values(
                rating=(Driver.rating * Driver.rating_count + float(stars))
                / (Driver.rating_count + 1),
                rating_count=Driver.rating_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with translate_errors("rate driver"), self._session_factory() as session:
            with transaction(session):
                result = session.execute(stmt)
                if result.rowcount == 0:  # type: ignore[attr-defined]
                    raise NotFoundError(
                        f"Driver {driver_id} not found", details={"driver_id": driver_id}
                    )
                return self._to_domain(session.get_one(Driver, driver_id))

    def _conditional_update(
        self, driver_id: str, expected_ride_id: str | None, values: dict[str, Any]
    ) -> DriverProfile:
        expected = (
            Driver.current_ride_id.is_(None)
            if expected_ride_id is None
            else Driver.current_ride_id == expected_ride_id
        )
        stmt = (
            update(Driver)
            .where(Driver.driver_id == driver_id, expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with translate_errors("update driver assignment"), self._session_factory() as session:
            with transaction(session):
                result = session.execute(stmt)
                row = session.get(Driver, driver_id)
                if row is None:
                    raise NotFoundError(
                        f"Driver {driver_id} not found", details={"driver_id": driver_id}
                    )
                if result.rowcount == 0:  # type: ignore[attr-defined]
                    raise ConflictError(
                        f"Driver {driver_id} is bound to {row.current_ride_id}, "
                        f"expected {expected_ride_id}",
                        details={
                            "driver_id": driver_id,
                            "expected_ride_id": expected_ride_id,
                            "actual_ride_id": row.current_ride_id,
                        },
                    )
                return self._to_domain(row)

    def _to_domain(self, row: Driver) -> DriverProfile:
        return DriverProfile.from_record(
            {
                "driver_id": row.driver_id,
                "verified": row.verified,
                "ride_types": row.ride_types,
                "current_ride_id": row.current_ride_id,
                "total_earnings": row.total_earnings,
                "completed_rides": row.completed_rides,
                "rating": row.rating,
                "rating_count": row.rating_count,
            }
        )


class SqlLocationStore(LocationStore):
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def save(self, location: ActorLocationDomain) -> None:
        with translate_errors("save location"), self._session_factory() as session:
            with transaction(session):
                row = session.get(ActorLocation, location.actor_id)
                if row is not None and location.updated_at < row.updated_at:
                    return
                session.merge(
                    ActorLocation(
                        actor_id=location.actor_id,
                        role=location.role.value,
                        lat=location.lat,
                        lon=location.lon,
                        online=location.online,
                        updated_at=location.updated_at,
                    )
                )

    def get(self, actor_id: str) -> ActorLocationDomain | None:
        with translate_errors("get location"), self._session_factory() as session:
            row = session.get(ActorLocation, actor_id)
            if row is None:
                return None
            return ActorLocationDomain(
                actor_id=row.actor_id,
                role=ActorRole(row.role),
                lat=row.lat,
                lon=row.lon,
                updated_at=row.updated_at,
                online=row.online,
            )

    def mark_offline(self, actor_id: str) -> None:
        stmt = (
            update(ActorLocation)
            .where(ActorLocation.actor_id == actor_id)
            .values(online=False)
            .execution_options(synchronize_session=False)
        )
        with translate_errors("mark offline"), self._session_factory() as session:
            with transaction(session):
                session.execute(stmt)
