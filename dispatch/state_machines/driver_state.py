from typing import Dict

from drivers.models import DriverStats
from pricing.fare import CommissionSplit


class DriverStateException(Exception):
    """Raised when a driver rating or counter update is invalid."""
    pass


def completion_deltas(split: CommissionSplit) -> Dict[str, float]:
    """
    Counter increments applied to the driver record when a ride completes.
    Sent as one atomic increment so concurrent completions cannot lose updates.
    """
    earnings = float(split.driver_earnings)
    return {
        "todayEarnings": earnings,
        "totalEarnings": earnings,
        "todayRides": 1,
        "totalRides": 1,
    }


def rider_completion_deltas() -> Dict[str, int]:
    return {"completedRides": 1}


def validate_stars(stars: int) -> int:
    if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
        raise DriverStateException(f"Rating must be a whole number of stars from 1 to 5, got {stars!r}")
    return stars


def apply_rating(stats: DriverStats, stars: int) -> Dict[str, float]:
    """
    Running average: (rating * n + stars) / (n + 1).
    Returns the fields to write; the caller writes them with a compare-and-set
    on the previous totalRatings so two ratings cannot overwrite each other.
    """
    validate_stars(stars)

    n = stats.total_ratings
    return {
        "rating": (stats.rating * n + stars) / (n + 1),
        "totalRatings": n + 1,
    }
