#Marks drivers as a package.
#Re-exports driver models, the matching policy and the proximity matcher.

from .models import DriverAvailability, DriverStats, VehicleType
from .policy import MatchingPolicy, default_matching_policy
from .selection import DriverCandidate, ProximityMatcher, filter_eligible_drivers, find_candidates

__all__ = [
    "DriverAvailability",
    "DriverStats",
    "VehicleType",
    "MatchingPolicy",
    "default_matching_policy",
    "DriverCandidate",
    "ProximityMatcher",
    "filter_eligible_drivers",
    "find_candidates",
]
