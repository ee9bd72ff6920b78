"""
Purpose: Business rules and distance math for choosing drivers near a pickup.
What it does:
Accepts a pickup point and a pool of drivers, filters out offline drivers and
anyone outside the search radius, and ranks the rest closest first
(ties: higher rating first, then driver id so the order is deterministic).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from geo.distance import GeoDistanceEngine, GeoInputError, coordinates_of

from .models import DriverAvailability, VehicleType
from .policy import MatchingPolicy, default_matching_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverCandidate:
    driver: DriverAvailability
    distance_km: float


def filter_eligible_drivers(
    drivers: Iterable[DriverAvailability],
    vehicle_type: Optional[VehicleType] = None,
) -> List[DriverAvailability]:
    """
    Returns only drivers who are online (and of the requested vehicle type, if any).
    """
    eligible = []

    for driver in drivers:
        if not driver.is_online:
            continue

        if vehicle_type is not None and driver.vehicle_type != vehicle_type:
            continue

        eligible.append(driver)

    return eligible


class ProximityMatcher:

    def __init__(self, engine: Optional[GeoDistanceEngine] = None, policy: Optional[MatchingPolicy] = None):
        self.engine = engine or GeoDistanceEngine()
        self.policy = policy or default_matching_policy()
        self.policy.validate()

    def rank_candidates(
        self,
        pickup: Any,
        drivers: Iterable[DriverAvailability],
        radius_km: Optional[float] = None,
        vehicle_type: Optional[VehicleType] = None,
    ) -> List[DriverCandidate]:
        """
        Raises GeoInputError for a bad pickup; a driver with a bad location is
        skipped so one corrupt record cannot break matching for everyone.
        """
        coordinates_of(pickup)
        radius_km = self.policy.radius_km if radius_km is None else radius_km

        candidates: List[DriverCandidate] = []

        for driver in filter_eligible_drivers(drivers, vehicle_type):
            try:
                distance_km = self.engine.distance(pickup, driver.location, use_cache=True)
            except GeoInputError as error:
                logger.warning("Skipping driver %s with invalid location: %s", driver.driver_id, error)
                continue

            if distance_km <= radius_km:
                candidates.append(DriverCandidate(driver=driver, distance_km=distance_km))

        candidates.sort(
            key=lambda candidate: (
                candidate.distance_km,
                -candidate.driver.rating,
                candidate.driver.driver_id,
            )
        )

        if self.policy.max_candidates is not None:
            candidates = candidates[: self.policy.max_candidates]

        return candidates

    def find_candidates(
        self,
        pickup: Any,
        drivers: Iterable[DriverAvailability],
        radius_km: Optional[float] = None,
        vehicle_type: Optional[VehicleType] = None,
    ) -> List[DriverAvailability]:
        return [
            candidate.driver
            for candidate in self.rank_candidates(pickup, drivers, radius_km, vehicle_type)
        ]


def find_candidates(
    pickup: Any,
    drivers: Iterable[DriverAvailability],
    radius_km: float = 10.0,
    engine: Optional[GeoDistanceEngine] = None,
) -> List[DriverAvailability]:
    """
    Convenience wrapper for one-off matching without holding a matcher.
    """
    return ProximityMatcher(engine=engine).find_candidates(pickup, drivers, radius_km=radius_km)
