"""Ingestion of actor location reports."""

import logging
import time
from collections.abc import Callable
from datetime import datetime

from ridedispatch.core.retry import RetryConfig, with_retry_sync
from ridedispatch.driver import ActorLocation, ActorRole, Availability
from ridedispatch.geo.distance import validate_coordinates
from ridedispatch.geo.geo_index import GeoIndex
from ridedispatch.metrics import location_reports, stale_drivers_expired
from ridedispatch.ride import utc_now
from ridedispatch.settings import TelemetrySettings
from ridedispatch.store.base import DriverStore, LocationStore

logger = logging.getLogger(__name__)


class LocationTelemetry:
    """Records where riders and drivers are.

    Every report is persisted as the actor's last-known location. Driver
    reports also refresh the geo index, with availability derived from
    the driver's current assignment so a report can never flip an
    in-ride driver back to idle.
    """

    def __init__(
        self,
        locations: LocationStore,
        drivers: DriverStore,
        geo_index: GeoIndex,
        settings: TelemetrySettings | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._locations = locations
        self._drivers = drivers
        self._geo_index = geo_index
        self._settings = settings or TelemetrySettings()
        self._clock = clock
        self._sleep = sleep
        self._retry = RetryConfig(
            max_attempts=self._settings.max_retries,
            base_delay=self._settings.retry_base_delay,
            multiplier=self._settings.retry_multiplier,
        )

    def report(
        self,
        actor_id: str,
        lat: float,
        lon: float,
        role: ActorRole,
        timestamp: datetime | None = None,
    ) -> ActorLocation:
        """Record a location report.

        Raises:
            InvalidCoordinateError: If lat/lon are missing, non-finite or
                out of range; nothing is written
            NotFoundError: If a driver report names an unregistered driver
        """
        validate_coordinates(lat, lon)
        availability = self._driver_availability(actor_id) if role == ActorRole.DRIVER else None

        location = ActorLocation(
            actor_id=actor_id,
            role=role,
            lat=lat,
            lon=lon,
            updated_at=timestamp or self._clock(),
            online=True,
        )
        with_retry_sync(
            lambda: self._locations.save(location),
            self._retry,
            operation_name=f"save location of {actor_id}",
            sleep=self._sleep,
        )
        if availability is not None:
            self._geo_index.upsert(actor_id, lat, lon, availability, location.updated_at)

        location_reports.labels(role=role.value).inc()
        return location

    def mark_offline(self, actor_id: str, role: ActorRole = ActorRole.DRIVER) -> None:
        """Take an actor off the map; drivers stop being matchable.

        A driver on a ride keeps the assignment. Ending the ride does not
        bring an offline driver back to idle; the next report does.
        """
        if role == ActorRole.DRIVER:
            profile = self._drivers.get(actor_id)
            if profile.current_ride_id is not None:
                logger.warning(
                    "Driver %s went offline during ride %s; assignment kept",
                    actor_id,
                    profile.current_ride_id,
                )
            self._geo_index.set_availability(actor_id, Availability.OFFLINE)

        with_retry_sync(
            lambda: self._locations.mark_offline(actor_id),
            self._retry,
            operation_name=f"mark {actor_id} offline",
            sleep=self._sleep,
        )
        logger.info("%s %s went offline", role.value.capitalize(), actor_id)

    def report_interval(self, role: ActorRole, in_ride: bool = False) -> float:
        """Seconds between reports expected from an actor."""
        if role == ActorRole.RIDER:
            return self._settings.rider_interval_seconds
        if in_ride:
            return self._settings.in_ride_interval_seconds
        return self._settings.driver_interval_seconds

    def expire_stale(self, now: datetime | None = None) -> list[str]:
        """Mark idle drivers that stopped reporting as offline."""
        expired = self._geo_index.expire_stale(now or self._clock())
        for driver_id in expired:
            self._locations.mark_offline(driver_id)
        if expired:
            stale_drivers_expired.inc(len(expired))
            logger.info("Marked %d stale drivers offline", len(expired))
        return expired

    def _driver_availability(self, driver_id: str) -> Availability:
        profile = self._drivers.get(driver_id)
        return Availability.IDLE if profile.current_ride_id is None else Availability.IN_RIDE
