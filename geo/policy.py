"""
Purpose: Central configuration for the geodesic distance engine.
What it does:

Stores the tunables for distance estimation and its cache:

EARTH_RADIUS_KM = 6371.071
ROAD_CORRECTION_FACTOR = 1.2 (allowed 1.2 - 1.3)
CACHE_MAX_ENTRIES = 1000, CACHE_EVICT_BATCH = 200

Rule: parameters only, no logic. Tune here without touching the engine.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DistancePolicy:
    """
    Tunables for GeoDistanceEngine.
    """

    # Mean Earth radius used by the haversine formula.
    earth_radius_km: float = 6371.071

    # --- Road estimate ---
    # Straight-line distance is multiplied by this to approximate driving distance.
    road_correction_factor: float = 1.2

    # --- Cache ---
    cache_max_entries: int = 1000
    # Oldest entries dropped in one pass once the cache overflows (batch FIFO).
    cache_evict_batch: int = 200
    # Decimal places kept per coordinate when building cache keys (~0.1 m).
    cache_key_precision: int = 6
    # A->B and B->A share one entry.
    normalize_cache_keys: bool = True

    # --- Display ---
    unit: str = "km"

    def validate(self) -> None:
        if self.earth_radius_km <= 0:
            raise ValueError("earth_radius_km must be > 0")

        if not 1.2 <= self.road_correction_factor <= 1.3:
            raise ValueError("road_correction_factor must be within [1.2, 1.3]")

        if self.cache_max_entries <= 0:
            raise ValueError("cache_max_entries must be > 0")

        if not 0 < self.cache_evict_batch <= self.cache_max_entries:
            raise ValueError("cache_evict_batch must be in (0, cache_max_entries]")

        if self.cache_key_precision < 0:
            raise ValueError("cache_key_precision must be >= 0")

        if self.unit not in ("km", "mi"):
            raise ValueError("unit must be 'km' or 'mi'")


def default_distance_policy() -> DistancePolicy:
    p = DistancePolicy()
    p.validate()
    return p
