"""
Purpose: Value types for per-device location tracking.
What it does:
Defines the accuracy tiers, the options each tier hands to the geolocation
source, and the update object delivered to listeners.
Position itself lives in geo.models and is re-exported here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from geo.models import Position, PositionSource


class TrackingTier(str, Enum):
    HIGH = "high"
    BALANCED = "balanced"
    LOW = "low"


@dataclass(frozen=True)
class TierOptions:
    """
    Options passed to GeolocationSource calls. Times are in seconds.
    """
    enable_high_accuracy: bool
    maximum_age_s: float
    timeout_s: float

    def to_dict(self) -> Dict[str, Any]:
        # the browser-style geolocation API speaks milliseconds
        return {
            "enableHighAccuracy": self.enable_high_accuracy,
            "maximumAge": int(self.maximum_age_s * 1000),
            "timeout": int(self.timeout_s * 1000),
        }


@dataclass(frozen=True)
class LocationUpdate:
    """
    What a LocationTracker delivers to its listeners.

    moved is False for jitter (a fix inside the movement threshold, forwarded
    with a refreshed timestamp) and for predictions; consumers use it to skip
    downstream writes.
    """
    position: Position
    moved: bool

    @property
    def is_predicted(self) -> bool:
        return self.position.source == PositionSource.PREDICTED


@dataclass(frozen=True)
class TrackerStatus:
    is_tracking: bool
    tier: TrackingTier
    last_position: Optional[Position]
    prediction_enabled: bool
    history_length: int
