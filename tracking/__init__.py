#Marks tracking as a package.
#Re-exports the tracker, its value types and the geolocation source contract.

from geo.models import Position, PositionSource

from .models import LocationUpdate, TierOptions, TrackerStatus, TrackingTier
from .policy import TrackingPolicy, default_tracking_policy
from .source import (
    GeolocationError,
    GeolocationErrorCode,
    GeolocationSource,
    LocationTimeout,
    LocationUnavailable,
    RawFix,
)
from .ticker import ThreadingTicker, Ticker
from .tracker import LocationTracker

__all__ = [
    "Position",
    "PositionSource",
    "LocationUpdate",
    "TierOptions",
    "TrackerStatus",
    "TrackingTier",
    "TrackingPolicy",
    "default_tracking_policy",
    "GeolocationError",
    "GeolocationErrorCode",
    "GeolocationSource",
    "LocationTimeout",
    "LocationUnavailable",
    "RawFix",
    "ThreadingTicker",
    "Ticker",
    "LocationTracker",
]
