import math

import pytest

from conftest import ISLAMABAD, offset_north
from ridedispatch.core.exceptions import (
    InvalidCoordinateError,
    NotFoundError,
    StoreTimeoutError,
)
from ridedispatch.driver import Actor, ActorRole, Availability, DriverProfile
from ridedispatch.settings import TelemetrySettings
from ridedispatch.store.memory import InMemoryLocationStore
from ridedispatch.telemetry.location_telemetry import LocationTelemetry


class FlakyLocationStore(InMemoryLocationStore):
    """Times out on the first `failures` saves."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def save(self, location):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StoreTimeoutError("location store busy")
        super().save(location)


@pytest.mark.unit
class TestReport:
    def test_driver_report_updates_store_and_index(
        self, telemetry, drivers, locations, geo_index, clock
    ):
        drivers.register(DriverProfile(driver_id="driver_1", verified=True))
        telemetry.report("driver_1", *ISLAMABAD, ActorRole.DRIVER)

        stored = locations.get("driver_1")
        assert (stored.lat, stored.lon) == ISLAMABAD
        assert stored.updated_at == clock()
        assert stored.online is True
        assert geo_index.get("driver_1").availability == Availability.IDLE

    def test_rider_report_skips_index(self, telemetry, locations, geo_index):
        telemetry.report("rider_1", *ISLAMABAD, ActorRole.RIDER)
        assert locations.get("rider_1").role == ActorRole.RIDER
        assert geo_index.get("rider_1") is None

    @pytest.mark.parametrize(
        "lat,lon",
        [(91.0, 73.0), (33.0, -181.0), (math.nan, 73.0), (33.0, math.inf)],
    )
    def test_invalid_coordinates_write_nothing(
        self, telemetry, drivers, locations, geo_index, lat, lon
    ):
        drivers.register(DriverProfile(driver_id="driver_1", verified=True))
        with pytest.raises(InvalidCoordinateError):
            telemetry.report("driver_1", lat, lon, ActorRole.DRIVER)
        assert locations.get("driver_1") is None
        assert len(geo_index) == 0

    def test_unregistered_driver(self, telemetry, locations):
        with pytest.raises(NotFoundError):
            telemetry.report("ghost", *ISLAMABAD, ActorRole.DRIVER)
        assert locations.get("ghost") is None

    def test_in_ride_driver_stays_in_ride(
        self, telemetry, dispatch, make_ride, online_driver, geo_index
    ):
        online_driver("driver_1")
        ride = make_ride()
        dispatch.accept(ride.id, "driver_1")

        moved = offset_north(*ISLAMABAD, 0.5)
        telemetry.report("driver_1", moved[0], moved[1], ActorRole.DRIVER)

        location = geo_index.get("driver_1")
        assert location.availability == Availability.IN_RIDE
        assert location.lat == pytest.approx(moved[0])

    def test_older_report_ignored(self, telemetry, drivers, geo_index, locations, clock):
        drivers.register(DriverProfile(driver_id="driver_1", verified=True))
        earlier = clock()
        clock.advance(10)
        telemetry.report("driver_1", *ISLAMABAD, ActorRole.DRIVER)

        moved = offset_north(*ISLAMABAD, 1.0)
        telemetry.report("driver_1", moved[0], moved[1], ActorRole.DRIVER, timestamp=earlier)

        assert geo_index.get("driver_1").lat == pytest.approx(ISLAMABAD[0])
        assert locations.get("driver_1").lat == pytest.approx(ISLAMABAD[0])

    def test_transient_store_failure_retried(self, drivers, geo_index, clock):
        store = FlakyLocationStore(failures=2)
        telemetry = LocationTelemetry(
            store,
            drivers,
            geo_index,
            TelemetrySettings(max_retries=3, retry_base_delay=0.0),
            clock=clock,
            sleep=lambda _: None,
        )
        telemetry.report("rider_1", *ISLAMABAD, ActorRole.RIDER)
        assert store.attempts == 3
        assert store.get("rider_1") is not None

    def test_retries_exhausted(self, drivers, geo_index, clock):
        store = FlakyLocationStore(failures=5)
        telemetry = LocationTelemetry(
            store,
            drivers,
            geo_index,
            TelemetrySettings(max_retries=2, retry_base_delay=0.0),
            clock=clock,
            sleep=lambda _: None,
        )
        with pytest.raises(StoreTimeoutError):
            telemetry.report("rider_1", *ISLAMABAD, ActorRole.RIDER)
        assert store.attempts == 2


@pytest.mark.unit
class TestReportInterval:
    def test_intervals(self, telemetry):
        assert telemetry.report_interval(ActorRole.DRIVER) == 15.0
        assert telemetry.report_interval(ActorRole.DRIVER, in_ride=True) == 10.0
        assert telemetry.report_interval(ActorRole.RIDER) == 10.0


@pytest.mark.unit
class TestOffline:
    def test_idle_driver_goes_offline(
        self, telemetry, online_driver, locations, geo_index, clock
    ):
        online_driver("driver_1")
        telemetry.mark_offline("driver_1")

        assert locations.get("driver_1").online is False
        assert geo_index.get("driver_1").availability == Availability.OFFLINE
        assert geo_index.query_nearby(*ISLAMABAD, radius_km=1.0, now=clock()) == []

    def test_driver_on_ride_goes_offline_and_keeps_ride(
        self, telemetry, dispatch, make_ride, online_driver, drivers, locations, geo_index, clock
    ):
        online_driver("driver_1")
        ride = make_ride()
        dispatch.accept(ride.id, "driver_1")

        telemetry.mark_offline("driver_1")

        assert locations.get("driver_1").online is False
        assert drivers.get("driver_1").current_ride_id == ride.id
        assert geo_index.get("driver_1").availability == Availability.OFFLINE

        clock.advance(5)
        telemetry.report("driver_1", *ISLAMABAD, ActorRole.DRIVER)
        assert geo_index.get("driver_1").availability == Availability.IN_RIDE

    def test_offline_driver_not_matchable_after_ride_ends(
        self, telemetry, dispatch, lifecycle, make_ride, online_driver, drivers, geo_index
    ):
        online_driver("driver_1")
        ride = make_ride()
        dispatch.accept(ride.id, "driver_1")
        telemetry.mark_offline("driver_1")

        lifecycle.cancel(ride.id, Actor.rider("rider_1"))

        assert drivers.get("driver_1").current_ride_id is None
        assert geo_index.get("driver_1").availability == Availability.OFFLINE
        other = make_ride(rider_id="rider_2")
        assert dispatch.find_candidates(other.id) == []

    def test_report_brings_driver_back(self, telemetry, online_driver, geo_index, clock):
        online_driver("driver_1")
        telemetry.mark_offline("driver_1")
        clock.advance(5)
        telemetry.report("driver_1", *ISLAMABAD, ActorRole.DRIVER)
        assert geo_index.get("driver_1").availability == Availability.IDLE


@pytest.mark.unit
class TestExpireStale:
    def test_silent_driver_expires(self, telemetry, online_driver, locations, clock):
        online_driver("driver_1")
        online_driver("driver_2")
        clock.advance(30)
        telemetry.report("driver_2", *ISLAMABAD, ActorRole.DRIVER)

        clock.advance(20)
        assert telemetry.expire_stale() == ["driver_1"]
        assert locations.get("driver_1").online is False
        assert locations.get("driver_2").online is True

    def test_fresh_drivers_kept(self, telemetry, online_driver, clock):
        online_driver("driver_1")
        clock.advance(44)
        assert telemetry.expire_stale() == []

    def test_in_ride_driver_not_expired(
        self, telemetry, dispatch, make_ride, online_driver, clock
    ):
        online_driver("driver_1")
        dispatch.accept(make_ride().id, "driver_1")
        clock.advance(120)
        assert telemetry.expire_stale() == []
