"""
Purpose: Central configuration for location tracking.
What it does:

Stores the accuracy tiers (in degrade order) and the jitter / history /
prediction thresholds:

| Tier     | max-age | timeout | enableHighAccuracy |
| high     | 5s      | 10s     | yes                |
| balanced | 15s     | 15s     | yes                |
| low      | 30s     | 20s     | no                 |

MIN_MOVEMENT_M = 10, HISTORY_SIZE = 10, PREDICTED_ACCURACY_FACTOR = 1.5

Rule: No logic here, just parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .models import TierOptions, TrackingTier


def _default_tiers() -> Dict[TrackingTier, TierOptions]:
    return {
        TrackingTier.HIGH: TierOptions(enable_high_accuracy=True, maximum_age_s=5, timeout_s=10),
        TrackingTier.BALANCED: TierOptions(enable_high_accuracy=True, maximum_age_s=15, timeout_s=15),
        TrackingTier.LOW: TierOptions(enable_high_accuracy=False, maximum_age_s=30, timeout_s=20),
    }


@dataclass(frozen=True)
class TrackingPolicy:
    """
    Tunables for LocationTracker.
    """

    tiers: Dict[TrackingTier, TierOptions] = field(default_factory=_default_tiers)

    # Timeouts step down this sequence and never climb back automatically.
    degrade_order: Tuple[TrackingTier, ...] = (
        TrackingTier.HIGH,
        TrackingTier.BALANCED,
        TrackingTier.LOW,
    )

    # --- Jitter suppression ---
    # A fix closer than this to the last reported fix is forwarded but is not movement.
    min_movement_m: float = 10.0

    # --- Movement history ---
    history_size: int = 10

    # --- Dead-reckoning ---
    prediction_enabled: bool = True
    predicted_accuracy_factor: float = 1.5
    # Refuse to extrapolate from two fixes further apart than this.
    max_prediction_gap_s: float = 30.0
    # While fixes keep failing, a fresh prediction is emitted at this interval.
    prediction_interval_s: float = 1.0
    # Non-degrading errors in a row before the first prediction.
    prediction_after_errors: int = 1

    def options_for(self, tier: TrackingTier) -> TierOptions:
        return self.tiers[tier]

    def next_tier(self, tier: TrackingTier) -> Optional[TrackingTier]:
        index = self.degrade_order.index(tier)
        if index + 1 < len(self.degrade_order):
            return self.degrade_order[index + 1]
        return None

    def validate(self) -> None:
        if not self.degrade_order:
            raise ValueError("degrade_order must not be empty")

        for tier in self.degrade_order:
            if tier not in self.tiers:
                raise ValueError(f"No options configured for tier {tier.value}")

        if self.min_movement_m <= 0:
            raise ValueError("min_movement_m must be > 0")

        if self.history_size < 2:
            raise ValueError("history_size must be >= 2 to support prediction")

        if self.predicted_accuracy_factor < 1.0:
            raise ValueError("predicted_accuracy_factor must be >= 1.0")

        if self.max_prediction_gap_s <= 0 or self.prediction_interval_s <= 0:
            raise ValueError("prediction timings must be > 0")

        if self.prediction_after_errors < 1:
            raise ValueError("prediction_after_errors must be >= 1")


def default_tracking_policy() -> TrackingPolicy:
    p = TrackingPolicy()
    p.validate()
    return p
