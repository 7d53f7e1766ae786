"""Centralized geographic distance calculations.

This module provides Haversine distance calculations for driver matching,
fare distances and arrival proximity checks. All implementations of the
dispatch core must agree on these numbers, so the formula and the Earth
radius are fixed here and nowhere else.
"""

from math import atan2, cos, isfinite, radians, sin, sqrt

from ridedispatch.core.exceptions import InvalidCoordinateError

EARTH_RADIUS_KM = 6371.0

# ~9e-6 degrees per meter (1 / 111,320 m per degree of latitude)
_LAT_DEGREES_PER_METER: float = 1.0 / 111_320


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in kilometers
    """
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)

    a = sin(dlat / 2) * sin(dlat / 2) + cos(radians(lat1)) * cos(radians(lat2)) * sin(
        dlon / 2
    ) * sin(dlon / 2)
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def haversine_distance_m(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Great-circle distance in meters (see haversine_distance_km)."""
    return haversine_distance_km(lat1, lon1, lat2, lon2) * 1000.0


def is_within_proximity(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    threshold_m: float = 50.0,
) -> bool:
    """Check if two geographic points are within a given distance threshold.

    Used for arrival detection at the pickup and destination.
    """
    # Bounding-box pre-check on latitude only; longitude degrees shrink
    # towards the poles so they cannot bound the distance from below.
    lat_threshold = threshold_m * _LAT_DEGREES_PER_METER * 1.01
    if abs(lat2 - lat1) > lat_threshold:
        return False

    return haversine_distance_m(lat1, lon1, lat2, lon2) <= threshold_m


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise InvalidCoordinateError unless lat/lon are finite and in range."""
    if lat is None or lon is None:
        raise InvalidCoordinateError(
            "Coordinates are required", details={"lat": lat, "lon": lon}
        )
    if not (isfinite(lat) and isfinite(lon)):
        raise InvalidCoordinateError(
            "Coordinates must be finite numbers", details={"lat": lat, "lon": lon}
        )
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinateError(
            f"Latitude {lat} outside [-90, 90]", details={"lat": lat, "lon": lon}
        )
    if not -180.0 <= lon <= 180.0:
        raise InvalidCoordinateError(
            f"Longitude {lon} outside [-180, 180]", details={"lat": lat, "lon": lon}
        )
