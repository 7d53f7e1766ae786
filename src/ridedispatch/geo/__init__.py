from .distance import (
    EARTH_RADIUS_KM,
    haversine_distance_km,
    haversine_distance_m,
    is_within_proximity,
    validate_coordinates,
)
from .geo_index import GeoIndex

__all__ = [
    "EARTH_RADIUS_KM",
    "GeoIndex",
    "haversine_distance_km",
    "haversine_distance_m",
    "is_within_proximity",
    "validate_coordinates",
]
