"""Deterministic fare pricing from ride type and great-circle distance."""

import math
import threading
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal

from ridedispatch.core.exceptions import ValidationError
from ridedispatch.geo.distance import haversine_distance_km
from ridedispatch.ride import Location, RideType
from ridedispatch.settings import FareSettings

# Float noise below this is dropped before rounding up for display
_DISPLAY_PRECISION = Decimal("1e-9")


@dataclass(frozen=True)
class FareTable:
    base_fare: float = 2.5
    min_fare: float = 5.0
    per_km: dict[str, float] = field(
        default_factory=lambda: {"bike": 0.8, "car": 1.2, "car_plus": 1.5, "premium": 2.0}
    )
    currency: str = "USD"
    display_unit: float = 0.01

    @classmethod
    def from_settings(cls, settings: FareSettings) -> "FareTable":
        return cls(
            base_fare=settings.base_fare,
            min_fare=settings.min_fare,
            per_km=dict(settings.per_km),
            currency=settings.currency,
            display_unit=settings.display_unit,
        )

    def rate_for(self, ride_type: RideType) -> float:
        try:
            return self.per_km[ride_type.value]
        except KeyError as e:
            raise ValidationError(
                f"No per-km rate configured for {ride_type.value}",
                details={"ride_type": ride_type.value},
            ) from e


@dataclass(frozen=True)
class FareQuote:
    ride_type: RideType
    base_fare: float
    per_km_rate: float
    min_fare: float
    distance_km: float
    total: float
    display_total: float
    currency: str


@dataclass(frozen=True)
class FareEstimate:
    quote: FareQuote
    estimated_minutes: int


def round_up(amount: float, unit: float) -> float:
    """Round up to the nearest multiple of unit, ignoring float noise."""
    step = Decimal(str(unit))
    exact = Decimal(amount).quantize(_DISPLAY_PRECISION)
    units = (exact / step).to_integral_value(rounding=ROUND_CEILING)
    return float(units * step)


class FareCalculator:
    """Pure pricing function over a swappable fare table."""

    def __init__(self, table: FareTable | None = None, average_speed_kmh: float = 30.0):
        self._table = table or FareTable()
        self._average_speed_kmh = average_speed_kmh
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: FareSettings) -> "FareCalculator":
        return cls(FareTable.from_settings(settings), settings.average_speed_kmh)

    @property
    def table(self) -> FareTable:
        with self._lock:
            return self._table

    def reconfigure(self, table: FareTable) -> None:
        """Swap the fare table; quotes already issued are unaffected."""
        with self._lock:
            self._table = table

    def fare(self, ride_type: RideType, distance_km: float) -> float:
        return self.quote(ride_type, distance_km).total

    def quote(self, ride_type: RideType, distance_km: float) -> FareQuote:
        if not math.isfinite(distance_km) or distance_km < 0:
            raise ValidationError(
                "Distance must be a non-negative number",
                details={"distance_km": distance_km},
            )

        table = self.table
        rate = table.rate_for(ride_type)
        total = max(table.base_fare + distance_km * rate, table.min_fare)

        return FareQuote(
            ride_type=ride_type,
            base_fare=table.base_fare,
            per_km_rate=rate,
            min_fare=table.min_fare,
            distance_km=distance_km,
            total=total,
            display_total=round_up(total, table.display_unit),
            currency=table.currency,
        )

    def estimate(
        self, ride_type: RideType, pickup: Location, destination: Location
    ) -> FareEstimate:
        distance = haversine_distance_km(pickup.lat, pickup.lon, destination.lat, destination.lon)
        return FareEstimate(
            quote=self.quote(ride_type, distance),
            estimated_minutes=self.estimate_minutes(distance),
        )

    def estimate_minutes(self, distance_km: float) -> int:
        # Rounded first so 10.000000000000002 minutes does not become 11
        minutes = math.ceil(round(distance_km / self._average_speed_kmh * 60, 6))
        return max(minutes, 1)
