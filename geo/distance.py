"""
Purpose: The single geodesic engine for the whole system.
What it does:
- Haversine great-circle distance on a mean Earth radius
- Road distance estimate = straight-line distance * road correction factor
  (an approximation in place of real routing)
- Bearing / destination-point helpers used by dead-reckoning
- A bounded result cache keyed by quantized coordinates, evicted in
  batches of the oldest insertions once it overflows

Invalid coordinates raise GeoInputError; they never silently become 0 km.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from numbers import Real
from threading import RLock
from typing import Any, Dict, List, Optional

from .models import LatLon, Position
from .policy import DistancePolicy, default_distance_policy

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.071


class GeoInputError(ValueError):
    """Raised when a coordinate is not a finite, in-range number."""
    pass


def validate_coordinates(lat: Any, lon: Any) -> LatLon:
    for name, value in (("latitude", lat), ("longitude", lon)):
        # bool is a Real subclass, but True is not a latitude
        if isinstance(value, bool) or not isinstance(value, Real):
            raise GeoInputError(f"{name} must be a real number, got {value!r}")
        if not math.isfinite(value):
            raise GeoInputError(f"{name} must be finite, got {value!r}")

    if not -90.0 <= lat <= 90.0:
        raise GeoInputError(f"latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise GeoInputError(f"longitude out of range: {lon}")

    return (float(lat), float(lon))


def coordinates_of(point: Any) -> LatLon:
    """
    Accepts a Position or a (lat, lon) pair and returns validated floats.
    """
    if isinstance(point, Position):
        return validate_coordinates(point.latitude, point.longitude)

    if isinstance(point, (tuple, list)) and len(point) == 2:
        return validate_coordinates(point[0], point[1])

    raise GeoInputError(f"Expected a Position or (lat, lon) pair, got {point!r}")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float, radius_km: float = EARTH_RADIUS_KM) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # clamp guards against a creeping just above 1.0 for antipodal points
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))
    return radius_km * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float, radius_km: float = EARTH_RADIUS_KM) -> float:
    return haversine_km(lat1, lon1, lat2, lon2, radius_km) * 1000.0


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial great-circle bearing from point 1 to point 2, degrees in [0, 360).
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(
    lat: float,
    lon: float,
    bearing_deg: float,
    distance_m: float,
    radius_km: float = EARTH_RADIUS_KM,
) -> LatLon:
    """
    Point reached after travelling distance_m along bearing_deg from (lat, lon).
    """
    angular = distance_m / (radius_km * 1000.0)
    theta = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)

    phi2 = math.asin(
        math.sin(phi1) * math.cos(angular)
        + math.cos(phi1) * math.sin(angular) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(angular) * math.cos(phi1),
        math.cos(angular) - math.sin(phi1) * math.sin(phi2),
    )

    # normalise longitude back into [-180, 180)
    lon2 = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return (math.degrees(phi2), lon2)


@dataclass(frozen=True)
class DistanceCacheEntry:
    key: str
    value_km: float
    insertion_order: int


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    evictions: int


class DistanceCache:
    """
    Bounded FIFO cache. When an insert pushes the size past max_entries the
    evict_batch oldest insertions are dropped in one pass (not LRU: reads do
    not refresh an entry).
    """

    def __init__(self, max_entries: int = 1000, evict_batch: int = 200):
        self.max_entries = max_entries
        self.evict_batch = evict_batch
        self._entries: Dict[str, DistanceCacheEntry] = {}
        self._next_order = 0
        self._lock = RLock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            return entry.value_km

    def put(self, key: str, value_km: float) -> None:
        with self._lock:
            if key in self._entries:
                return

            self._entries[key] = DistanceCacheEntry(key, value_km, self._next_order)
            self._next_order += 1

            if len(self._entries) > self.max_entries:
                self._evict_oldest()

    def _evict_oldest(self) -> None:
        # dicts keep insertion order and entries are never re-inserted,
        # so the first keys are the oldest
        oldest = list(self._entries.values())[: self.evict_batch]
        for entry in oldest:
            del self._entries[entry.key]
        self.evictions += len(oldest)
        logger.debug("Distance cache evicted %d entries, %d remain", len(oldest), len(self._entries))

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self.hits,
                misses=self.misses,
                evictions=self.evictions,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class GeoDistanceEngine:
    """
    distance(a, b) -> estimated road kilometers between two points.

    The cache stores the straight-line value; the road factor is applied on
    the way out, so cached and uncached calls run the same arithmetic and
    return bit-identical results.
    """

    def __init__(self, policy: Optional[DistancePolicy] = None):
        self.policy = policy or default_distance_policy()
        self.policy.validate()
        self.cache = DistanceCache(
            max_entries=self.policy.cache_max_entries,
            evict_batch=self.policy.cache_evict_batch,
        )

    def _quantize(self, lat: float, lon: float) -> str:
        precision = self.policy.cache_key_precision
        # "+ 0.0" folds -0.0 into 0.0 so both render the same key
        return f"{round(lat, precision) + 0.0:.{precision}f},{round(lon, precision) + 0.0:.{precision}f}"

    def cache_key(self, a: Any, b: Any) -> str:
        first = self._quantize(*coordinates_of(a))
        second = self._quantize(*coordinates_of(b))
        if self.policy.normalize_cache_keys and second < first:
            first, second = second, first
        return f"{first}|{second}"

    def straight_line_km(self, a: Any, b: Any, use_cache: bool = True) -> float:
        lat1, lon1 = coordinates_of(a)
        lat2, lon2 = coordinates_of(b)

        if not use_cache:
            return haversine_km(lat1, lon1, lat2, lon2, self.policy.earth_radius_km)

        key = self.cache_key((lat1, lon1), (lat2, lon2))
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        value = haversine_km(lat1, lon1, lat2, lon2, self.policy.earth_radius_km)
        self.cache.put(key, value)
        return value

    def distance(self, a: Any, b: Any, use_cache: bool = True) -> float:
        return self.straight_line_km(a, b, use_cache=use_cache) * self.policy.road_correction_factor

    def distance_m(self, a: Any, b: Any, use_cache: bool = True) -> float:
        return self.distance(a, b, use_cache=use_cache) * 1000.0

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()
