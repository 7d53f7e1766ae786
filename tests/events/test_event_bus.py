import logging

import pytest

from ridedispatch.events.bus import EventBus
from ridedispatch.events.factory import driver_status_event, ride_event
from ridedispatch.ride import Location, RideRequest, RideStatus, RideType


@pytest.fixture
def ride():
    return RideRequest(
        rider_id="rider_1",
        pickup_location=Location(lat=33.6844, lon=73.0479),
        destination_location=Location(lat=33.7294, lon=73.0479),
        ride_type=RideType.CAR,
    )


@pytest.mark.unit
class TestEventBus:
    def test_listener_receives_events(self, ride):
        bus = EventBus()
        received = []
        bus.subscribe(received.append)

        bus.publish(ride_event(ride))

        assert len(received) == 1
        assert received[0].event_type == "ride.searching"
        assert received[0].ride_id == ride.id
        assert received[0].correlation_id == ride.id

    def test_filter_by_event_type(self, ride):
        bus = EventBus()
        received = []
        bus.subscribe(received.append, event_types={"driver.status"})

        bus.publish(ride_event(ride))
        bus.publish(driver_status_event("driver_1", "idle", "in_ride", ride.id))

        assert [e.event_type for e in received] == ["driver.status"]

    def test_unsubscribe(self, ride):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)
        assert bus.subscriber_count == 1

        unsubscribe()
        bus.publish(ride_event(ride))

        assert received == []
        assert bus.subscriber_count == 0

    def test_failing_listener_is_isolated(self, ride, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("listener down")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="ridedispatch.events.bus"):
            bus.publish(ride_event(ride))

        assert len(received) == 1
        assert "Event listener failed" in caplog.text


@pytest.mark.unit
class TestEventFactory:
    def test_explicit_event_type(self, ride):
        event = ride_event(ride, "ride.rated")
        assert event.event_type == "ride.rated"
        assert event.status == RideStatus.SEARCHING.value

    def test_ride_event_carries_outcome(self, ride):
        completed = ride.model_copy(
            update={"status": RideStatus.COMPLETED, "fare": 8.5, "distance_km": 5.0}
        )
        event = ride_event(completed)
        assert event.event_type == "ride.completed"
        assert event.fare == 8.5
        assert event.distance_km == 5.0

    def test_driver_status_event(self):
        event = driver_status_event("driver_1", "in_ride", "idle")
        assert event.event_type == "driver.status"
        assert event.current_ride_id is None
        assert event.correlation_id is None
