#Marks geo as a package and re-exports the public geodesic API so callers
#import from geo without knowing internal file names.
#No business logic.

from .models import LatLon, Position, PositionSource
from .distance import (
    EARTH_RADIUS_KM,
    DistanceCache,
    GeoDistanceEngine,
    GeoInputError,
    haversine_km,
    haversine_m,
)
from .policy import DistancePolicy, default_distance_policy
from .units import format_distance, km_to_miles

__all__ = [
    "LatLon",
    "Position",
    "PositionSource",
    "EARTH_RADIUS_KM",
    "DistanceCache",
    "GeoDistanceEngine",
    "GeoInputError",
    "haversine_km",
    "haversine_m",
    "DistancePolicy",
    "default_distance_policy",
    "format_distance",
    "km_to_miles",
]
