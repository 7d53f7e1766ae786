"""Tests for the ride and driver records."""

from datetime import UTC, datetime

import pytest

from ridedispatch.driver import Actor, ActorRole, DriverProfile
from ridedispatch.ride import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    Location,
    RideRequest,
    RideStatus,
    RideType,
    is_valid_transition,
)


def sample_ride(**overrides) -> RideRequest:
    data = {
        "rider_id": "rider_1",
        "pickup_location": Location(lat=33.6844, lon=73.0479),
        "destination_location": Location(lat=33.7294, lon=73.0479),
        "ride_type": RideType.CAR,
        "created_at": datetime(2026, 1, 5, 12, 0, tzinfo=UTC),
    }
    data.update(overrides)
    return RideRequest(**data)


@pytest.mark.unit
class TestRideStatus:
    def test_status_values(self):
        assert [s.value for s in RideStatus] == [
            "searching",
            "accepted",
            "arrived",
            "in_progress",
            "completed",
            "cancelled",
        ]

    def test_to_event_type(self):
        assert RideStatus.ACCEPTED.to_event_type() == "ride.accepted"
        assert RideStatus.IN_PROGRESS.to_event_type() == "ride.in_progress"

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert VALID_TRANSITIONS[status] == set()

    def test_every_live_state_can_cancel(self):
        for status in set(RideStatus) - TERMINAL_STATUSES:
            assert is_valid_transition(status, RideStatus.CANCELLED)

    def test_no_skipping_phases(self):
        assert not is_valid_transition(RideStatus.SEARCHING, RideStatus.ARRIVED)
        assert not is_valid_transition(RideStatus.ACCEPTED, RideStatus.IN_PROGRESS)
        assert not is_valid_transition(RideStatus.ARRIVED, RideStatus.COMPLETED)


@pytest.mark.unit
class TestRideRequest:
    def test_defaults(self):
        ride = sample_ride()
        assert ride.id.startswith("ride_")
        assert ride.status == RideStatus.SEARCHING
        assert ride.driver_id is None
        assert ride.version == 0
        assert not ride.is_terminal

    def test_ids_are_unique(self):
        assert sample_ride().id != sample_ride().id

    def test_record_is_flat(self):
        record = sample_ride(id="ride_abc").to_record()

        assert record["id"] == "ride_abc"
        assert record["pickup_lat"] == 33.6844
        assert record["destination_lon"] == 73.0479
        assert record["status"] == "searching"
        assert record["ride_type"] == "car"
        assert "pickup_location" not in record

    def test_from_record_restores_locations(self):
        ride = sample_ride(id="ride_abc")
        restored = RideRequest.from_record(ride.to_record())
        assert restored == ride

    def test_from_record_with_missing_coordinates(self):
        record = sample_ride().to_record()
        record["pickup_lat"] = None
        assert RideRequest.from_record(record).pickup_location is None


@pytest.mark.unit
class TestDriverProfile:
    def test_serves_all_types_when_unrestricted(self):
        profile = DriverProfile(driver_id="d1", verified=True)
        assert all(profile.serves(rt) for rt in RideType)

    def test_serves_only_listed_types(self):
        profile = DriverProfile(driver_id="d1", ride_types={RideType.BIKE})
        assert profile.serves(RideType.BIKE)
        assert not profile.serves(RideType.PREMIUM)

    def test_record_joins_ride_types(self):
        profile = DriverProfile(driver_id="d1", ride_types={RideType.CAR, RideType.BIKE})
        record = profile.to_record()
        assert record["ride_types"] == "bike,car"
        assert DriverProfile.from_record(record) == profile

    def test_actor_constructors(self):
        assert Actor.rider("r1") == Actor(actor_id="r1", role=ActorRole.RIDER)
        assert Actor.driver("d1").role == ActorRole.DRIVER
