"""Stress tests for single assignment and one active ride per rider under concurrency.

Races are probabilistic, so each scenario is repeated several times.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import ISLAMABAD, offset_north
from ridedispatch.core.exceptions import (
    AlreadyTakenError,
    AlreadyTerminalError,
    AssignmentFailedError,
    ConflictError,
    DriverBusyError,
)
from ridedispatch.driver import Actor, Availability, DriverProfile
from ridedispatch.matching.dispatch_engine import DispatchEngine
from ridedispatch.ride import Location, RideRequest, RideStatus, RideType
from ridedispatch.service import RideService
from ridedispatch.settings import Settings, StoreSettings
from ridedispatch.store import build_stores

STRESS_ITERATIONS = 5


@pytest.mark.critical
class TestConcurrentAccept:
    def test_many_drivers_one_ride(self, dispatch, make_ride, online_driver, drivers, rides):
        driver_ids = [f"driver_{i}" for i in range(12)]
        for i, driver_id in enumerate(driver_ids):
            online_driver(driver_id, offset_north(*ISLAMABAD, 0.1 * (i + 1)))

        for iteration in range(STRESS_ITERATIONS):
            ride = make_ride(rider_id=f"rider_{iteration}")

            def attempt(driver_id: str, ride_id: str = ride.id) -> str:
                try:
                    dispatch.accept(ride_id, driver_id)
                    return "won"
                except AlreadyTakenError:
                    return "lost"

            with ThreadPoolExecutor(max_workers=12) as pool:
                outcomes = list(pool.map(attempt, driver_ids))

            assert outcomes.count("won") == 1
            winner = driver_ids[outcomes.index("won")]
            stored = rides.get(ride.id)
            assert stored.status == RideStatus.ACCEPTED
            assert stored.driver_id == winner
            bound = [d for d in driver_ids if drivers.get(d).current_ride_id == ride.id]
            assert bound == [winner]

            # Free the winner for the next round
            drivers.compare_and_set_current_ride(winner, ride.id, None)

    def test_one_driver_many_rides(self, dispatch, make_ride, online_driver, drivers, rides):
        online_driver("driver_1")
        ride_ids = [make_ride(rider_id=f"rider_{i}").id for i in range(8)]

        def attempt(ride_id: str) -> str:
            try:
                dispatch.accept(ride_id, "driver_1")
                return "won"
            except (DriverBusyError, AssignmentFailedError):
                return "lost"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, ride_ids))

        assert outcomes.count("won") == 1
        current = drivers.get("driver_1").current_ride_id
        assert current == ride_ids[outcomes.index("won")]
        accepted = [r for r in ride_ids if rides.get(r).status == RideStatus.ACCEPTED]
        assert accepted == [current]
        # Losing rides went back to searching
        searching = [r for r in ride_ids if rides.get(r).status == RideStatus.SEARCHING]
        assert len(searching) == len(ride_ids) - 1

    def test_accept_racing_cancel(
        self, dispatch, lifecycle, make_ride, online_driver, drivers, rides
    ):
        online_driver("driver_1")

        for iteration in range(STRESS_ITERATIONS * 4):
            rider = Actor.rider(f"rider_{iteration}")
            ride = make_ride(rider_id=rider.actor_id)

            def accept(ride_id: str = ride.id) -> None:
                try:
                    dispatch.accept(ride_id, "driver_1")
                except AlreadyTerminalError:
                    pass

            def cancel(ride_id: str = ride.id, actor: Actor = rider) -> None:
                try:
                    lifecycle.cancel(ride_id, actor)
                except ConflictError:
                    pass

            with ThreadPoolExecutor(max_workers=2) as pool:
                futures = [pool.submit(accept), pool.submit(cancel)]
                for future in futures:
                    future.result()

            final = rides.get(ride.id)
            assert final.status == RideStatus.CANCELLED
            assert drivers.get("driver_1").current_ride_id is None


@pytest.mark.integration
@pytest.mark.critical
class TestConcurrentAcceptSql:
    def test_many_drivers_one_ride_sql(self, temp_sqlite_db, geo_index, event_bus, clock):
        stores = build_stores(StoreSettings(backend="sql", database_path=str(temp_sqlite_db)))
        engine = DispatchEngine(
            stores.rides, stores.drivers, stores.locations, geo_index, event_bus, clock=clock
        )
        driver_ids = [f"driver_{i}" for i in range(6)]
        for driver_id in driver_ids:
            stores.drivers.register(DriverProfile(driver_id=driver_id, verified=True))
            geo_index.upsert(driver_id, *ISLAMABAD, Availability.IDLE, clock())
        ride = RideRequest(
            rider_id="rider_1",
            pickup_location=Location(lat=ISLAMABAD[0], lon=ISLAMABAD[1]),
            destination_location=Location(lat=ISLAMABAD[0] + 0.04, lon=ISLAMABAD[1]),
            ride_type=RideType.CAR,
        )
        stores.rides.create(ride)

        def attempt(driver_id: str) -> str:
            try:
                engine.accept(ride.id, driver_id)
                return "won"
            except AlreadyTakenError:
                return "lost"

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, driver_ids))

        assert outcomes.count("won") == 1
        winner = driver_ids[outcomes.index("won")]
        assert stores.rides.get(ride.id).driver_id == winner
        assert [d for d in driver_ids if stores.drivers.get(d).current_ride_id] == [winner]


@pytest.mark.critical
class TestConcurrentRideRequests:
    @pytest.mark.parametrize("backend", ["memory", "sql"])
    def test_rider_gets_one_active_ride(self, backend, temp_sqlite_db):
        stores = build_stores(StoreSettings(backend=backend, database_path=str(temp_sqlite_db)))
        service = RideService(stores, Settings())
        pickup = Location(lat=ISLAMABAD[0], lon=ISLAMABAD[1])
        destination = Location(lat=ISLAMABAD[0] + 0.04, lon=ISLAMABAD[1])
        barrier = threading.Barrier(6)

        def attempt(_: int) -> str:
            barrier.wait(timeout=5.0)
            try:
                service.request_ride("rider_1", pickup, destination, RideType.CAR)
                return "created"
            except ConflictError:
                return "rejected"

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, range(6)))

        assert outcomes.count("created") == 1
        assert outcomes.count("rejected") == 5
        assert len(service.rides_for_rider("rider_1")) == 1
