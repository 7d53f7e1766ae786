"""Ride, driver and location persistence."""

import logging
from dataclasses import dataclass

from ridedispatch.settings import StoreSettings

from .base import DriverStore, LocationStore, RideListing, RideRequestStore
from .memory import InMemoryDriverStore, InMemoryLocationStore, InMemoryRideStore
from .sql import SqlDriverStore, SqlLocationStore, SqlRideStore

logger = logging.getLogger(__name__)

__all__ = [
    "DriverStore",
    "InMemoryDriverStore",
    "InMemoryLocationStore",
    "InMemoryRideStore",
    "LocationStore",
    "RideListing",
    "RideRequestStore",
    "SqlDriverStore",
    "SqlLocationStore",
    "SqlRideStore",
    "Stores",
    "build_stores",
]


@dataclass
class Stores:
    rides: RideRequestStore
    drivers: DriverStore
    locations: LocationStore


def build_stores(settings: StoreSettings) -> Stores:
    """Build the store backend selected by configuration."""
    if settings.backend == "memory":
        logger.info("Using in-memory store backend")
        return Stores(
            rides=InMemoryRideStore(settings.timeout_seconds),
            drivers=InMemoryDriverStore(settings.timeout_seconds),
            locations=InMemoryLocationStore(),
        )

    from .database import init_database

    session_factory = init_database(settings.database_path, settings.timeout_seconds)
    logger.info("Using SQL store backend: %s", settings.database_path)
    return Stores(
        rides=SqlRideStore(session_factory),
        drivers=SqlDriverStore(session_factory),
        locations=SqlLocationStore(session_factory),
    )
