import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

import h3

from ridedispatch.driver import Availability, DriverLocation
from ridedispatch.geo.distance import haversine_distance_km
from ridedispatch.ride import utc_now


@dataclass(frozen=True)
class _Entry:
    lat: float
    lon: float
    cell: str
    updated_at: datetime
    availability: Availability


class GeoIndex:
    """Spatial index for driver locations using H3 hexagonal cells.

    Thread-safe: entries are immutable and swapped under one lock, so a
    query never observes a half-written record.
    """

    def __init__(self, h3_resolution: int = 9, staleness_seconds: float = 45.0):
        self._h3_resolution = h3_resolution
        self._staleness = timedelta(seconds=staleness_seconds)
        self._edge_km = h3.average_hexagon_edge_length(h3_resolution, unit="km")
        self._h3_cells: dict[str, set[str]] = {}
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    @property
    def staleness(self) -> timedelta:
        return self._staleness

    def upsert(
        self,
        driver_id: str,
        lat: float,
        lon: float,
        availability: Availability,
        timestamp: datetime,
    ) -> bool:
        """Insert or overwrite a driver's position.

        Reports older than the stored one are ignored so replays and
        retried writes are harmless. Returns whether the entry changed.
        """
        with self._lock:
            current = self._entries.get(driver_id)
            if current is not None and timestamp < current.updated_at:
                return False

            new_cell = self._get_h3_cell(lat, lon)
            if current is not None and current.cell != new_cell:
                self._discard_from_cell(driver_id, current.cell)
            self._h3_cells.setdefault(new_cell, set()).add(driver_id)
            self._entries[driver_id] = _Entry(lat, lon, new_cell, timestamp, availability)
            return True

    def set_availability(self, driver_id: str, availability: Availability) -> None:
        with self._lock:
            current = self._entries.get(driver_id)
            if current is None:
                return
            self._entries[driver_id] = _Entry(
                current.lat, current.lon, current.cell, current.updated_at, availability
            )

    def get(self, driver_id: str) -> DriverLocation | None:
        with self._lock:
            entry = self._entries.get(driver_id)
        if entry is None:
            return None
        return DriverLocation(
            driver_id=driver_id,
            lat=entry.lat,
            lon=entry.lon,
            updated_at=entry.updated_at,
            availability=entry.availability,
        )

    def query_nearby(
        self,
        lat: float,
        lon: float,
        radius_km: float = 6.0,
        availability_filter: Availability | set[Availability] = Availability.IDLE,
        now: datetime | None = None,
    ) -> list[tuple[str, float]]:
        """Fresh drivers within radius, ascending by distance (ties by id)."""
        filter_set: set[Availability] = (
            {availability_filter}
            if isinstance(availability_filter, Availability)
            else set(availability_filter)
        )
        cutoff = (now or utc_now()) - self._staleness

        with self._lock:
            if not self._entries:
                return []

            max_k = max(1, int(radius_km / self._edge_km) + 2)
            disk_size = 3 * max_k * (max_k + 1) + 1
            if disk_size > len(self._h3_cells):
                # Sparse index: scanning occupied cells is cheaper than the disk
                driver_ids = [d for members in self._h3_cells.values() for d in members]
            else:
                center_cell = self._get_h3_cell(lat, lon)
                driver_ids = [
                    d
                    for cell in h3.grid_disk(center_cell, max_k)
                    for d in self._h3_cells.get(cell, ())
                ]

            candidates: list[tuple[str, float]] = []
            for driver_id in driver_ids:
                entry = self._entries[driver_id]
                if entry.availability not in filter_set or entry.updated_at < cutoff:
                    continue
                distance = haversine_distance_km(lat, lon, entry.lat, entry.lon)
                if distance <= radius_km:
                    candidates.append((driver_id, distance))

        candidates.sort(key=lambda x: (x[1], x[0]))
        return candidates

    def expire_stale(self, now: datetime | None = None) -> list[str]:
        """Mark idle drivers whose last report is too old as offline."""
        cutoff = (now or utc_now()) - self._staleness
        expired: list[str] = []
        with self._lock:
            for driver_id, entry in self._entries.items():
                if entry.availability == Availability.IDLE and entry.updated_at < cutoff:
                    expired.append(driver_id)
            for driver_id in expired:
                entry = self._entries[driver_id]
                self._entries[driver_id] = _Entry(
                    entry.lat, entry.lon, entry.cell, entry.updated_at, Availability.OFFLINE
                )
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _discard_from_cell(self, driver_id: str, cell: str) -> None:
        members = self._h3_cells.get(cell)
        if members is None:
            return
        members.discard(driver_id)
        if not members:
            del self._h3_cells[cell]

    def _get_h3_cell(self, lat: float, lon: float) -> str:
        return h3.latlng_to_cell(lat, lon, self._h3_resolution)

    def clear(self) -> None:
        """Clear all index state."""
        with self._lock:
            self._h3_cells.clear()
            self._entries.clear()
