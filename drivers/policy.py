"""
Purpose: Central configuration for driver matching.
What it does:

Stores the tunables used when looking for drivers around a pickup:

RADIUS_KM = 10
MAX_CANDIDATES = None (no cap)

Rule: No logic here, just the knobs the matcher reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MatchingPolicy:
    """
    Central configuration for proximity matching.
    """

    # --- Search radius ---
    # Drivers further than this (estimated road km) from the pickup are not candidates.
    radius_km: float = 10.0

    # --- Output cap ---
    # Trim the ranked list to the closest N drivers; None keeps everyone in range.
    max_candidates: Optional[int] = None

    def validate(self) -> None:
        if self.radius_km <= 0:
            raise ValueError("radius_km must be > 0")

        if self.max_candidates is not None and self.max_candidates <= 0:
            raise ValueError("max_candidates must be > 0 when set")


def default_matching_policy() -> MatchingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = MatchingPolicy()
    p.validate()
    return p
