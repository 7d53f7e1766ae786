"""Driver binding helpers shared by dispatch and the ride state machine."""

import logging

from ridedispatch.core.exceptions import ConflictError
from ridedispatch.driver import Availability
from ridedispatch.events.bus import EventBus
from ridedispatch.events.factory import driver_status_event
from ridedispatch.geo.geo_index import GeoIndex
from ridedispatch.store.base import DriverStore

logger = logging.getLogger(__name__)


def mark_in_ride(
    geo_index: GeoIndex, event_bus: EventBus | None, driver_id: str, ride_id: str
) -> None:
    geo_index.set_availability(driver_id, Availability.IN_RIDE)
    if event_bus is not None:
        event_bus.publish(
            driver_status_event(
                driver_id, Availability.IDLE.value, Availability.IN_RIDE.value, ride_id
            )
        )


def mark_idle(geo_index: GeoIndex, event_bus: EventBus | None, driver_id: str) -> None:
    """Return a driver to matching unless it went offline in the meantime."""
    location = geo_index.get(driver_id)
    if location is None or location.availability != Availability.IN_RIDE:
        return
    geo_index.set_availability(driver_id, Availability.IDLE)
    if event_bus is not None:
        event_bus.publish(
            driver_status_event(driver_id, Availability.IN_RIDE.value, Availability.IDLE.value)
        )


def release_driver(
    drivers: DriverStore,
    geo_index: GeoIndex,
    event_bus: EventBus | None,
    driver_id: str,
    ride_id: str,
) -> bool:
    """Clear the driver's binding to ride_id if it still holds it.

    Returns False when the driver was not bound to this ride (already
    released, or the bind never landed).
    """
    try:
        drivers.compare_and_set_current_ride(driver_id, ride_id, None)
    except ConflictError:
        logger.debug("Driver %s was not bound to ride %s", driver_id, ride_id)
        return False

    mark_idle(geo_index, event_bus, driver_id)
    logger.info("Released driver %s from ride %s", driver_id, ride_id)
    return True
