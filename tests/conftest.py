import os

# Credential fields have no defaults (the service must fail without secrets).
# Provide test values so Settings() can be constructed in tests.
os.environ.setdefault("API_KEY", "test-api-key")

import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from ridedispatch.api.app import create_app
from ridedispatch.driver import ActorRole, DriverProfile
from ridedispatch.events.bus import EventBus
from ridedispatch.fare import FareCalculator
from ridedispatch.geo.geo_index import GeoIndex
from ridedispatch.lifecycle.state_machine import RideStateMachine
from ridedispatch.matching.dispatch_engine import DispatchEngine
from ridedispatch.ride import Location, RideRequest, RideType
from ridedispatch.service import RideService
from ridedispatch.settings import DispatchSettings, Settings, StoreSettings, TelemetrySettings
from ridedispatch.store import build_stores
from ridedispatch.store.memory import (
    InMemoryDriverStore,
    InMemoryLocationStore,
    InMemoryRideStore,
)
from ridedispatch.telemetry.location_telemetry import LocationTelemetry

# Islamabad, used as the reference city throughout the tests
ISLAMABAD = (33.6844, 73.0479)


def offset_north(lat: float, lon: float, km: float) -> tuple[float, float]:
    """Point exactly km kilometers due north on the haversine sphere."""
    return lat + math.degrees(km / 6371.0), lon


class FakeClock:
    """Manually advanced clock injected wherever components read time."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def temp_sqlite_db(tmp_path):
    """Temporary SQLite database for persistence tests."""
    return tmp_path / "test_ridedispatch.db"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus) -> list:
    """Every event published on the shared bus, in order."""
    events: list = []
    event_bus.subscribe(events.append)
    return events


@pytest.fixture
def rides() -> InMemoryRideStore:
    return InMemoryRideStore(timeout_seconds=2.0)


@pytest.fixture
def drivers() -> InMemoryDriverStore:
    return InMemoryDriverStore(timeout_seconds=2.0)


@pytest.fixture
def locations() -> InMemoryLocationStore:
    return InMemoryLocationStore()


@pytest.fixture
def geo_index() -> GeoIndex:
    return GeoIndex(h3_resolution=9, staleness_seconds=45.0)


@pytest.fixture
def fare_calculator() -> FareCalculator:
    return FareCalculator()


@pytest.fixture
def dispatch_settings() -> DispatchSettings:
    return DispatchSettings()


@pytest.fixture
def telemetry(locations, drivers, geo_index, clock) -> LocationTelemetry:
    return LocationTelemetry(
        locations,
        drivers,
        geo_index,
        TelemetrySettings(retry_base_delay=0.0),
        clock=clock,
        sleep=lambda _: None,
    )


@pytest.fixture
def dispatch(rides, drivers, locations, geo_index, event_bus, dispatch_settings, clock):
    return DispatchEngine(
        rides, drivers, locations, geo_index, event_bus, dispatch_settings, clock
    )


@pytest.fixture
def lifecycle(
    rides, drivers, locations, geo_index, fare_calculator, event_bus, dispatch_settings, clock
):
    return RideStateMachine(
        rides,
        drivers,
        locations,
        geo_index,
        fare_calculator,
        event_bus,
        dispatch_settings,
        clock,
        sleep=lambda _: None,
    )


@pytest.fixture
def make_ride(rides, clock) -> Callable[..., RideRequest]:
    """Persist a searching ride; the destination defaults to 5 km north."""

    def _make(
        rider_id: str = "rider_1",
        pickup: tuple[float, float] = ISLAMABAD,
        destination: tuple[float, float] | None = None,
        ride_type: RideType = RideType.CAR,
    ) -> RideRequest:
        destination = destination or offset_north(*pickup, 5.0)
        ride = RideRequest(
            rider_id=rider_id,
            pickup_location=Location(lat=pickup[0], lon=pickup[1]),
            destination_location=Location(lat=destination[0], lon=destination[1]),
            ride_type=ride_type,
            created_at=clock(),
        )
        rides.create(ride)
        return ride

    return _make


@pytest.fixture
def online_driver(drivers, telemetry) -> Callable[..., DriverProfile]:
    """Register a verified driver and report its position."""

    def _online(
        driver_id: str,
        position: tuple[float, float] = ISLAMABAD,
        verified: bool = True,
        ride_types: set[RideType] | None = None,
    ) -> DriverProfile:
        profile = drivers.register(
            DriverProfile(driver_id=driver_id, verified=verified, ride_types=ride_types or set())
        )
        telemetry.report(driver_id, position[0], position[1], ActorRole.DRIVER)
        return profile

    return _online


@pytest.fixture
def api_service():
    """Service over in-memory stores, as the HTTP layer sees it."""
    return RideService(build_stores(StoreSettings()), Settings())


@pytest.fixture
def test_client(api_service):
    """Authenticated client; tests add actor headers per request."""
    client = TestClient(create_app(api_service), raise_server_exceptions=False)
    client.headers["X-API-Key"] = "test-api-key"
    return client


def actor_headers(actor_id: str, role: str) -> dict[str, str]:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}
