"""
Purpose: The geolocation source contract consumed by LocationTracker.
What it does:
Mirrors the platform "get current position once" / "watch position" calls.
Each call takes TierOptions and yields RawFix readings or a GeolocationError
carrying one of: permission-denied | timeout | unavailable.

Implementations (device bridge, GPS daemon, simulator) live outside the core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .models import TierOptions


class GeolocationErrorCode(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


class GeolocationError(Exception):
    """Raw error reported by a geolocation source."""

    def __init__(self, code: GeolocationErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code


class LocationUnavailable(Exception):
    """Permission denied or no positioning hardware; terminal for the session."""
    pass


class LocationTimeout(Exception):
    """No fix within the timeout, surfaced only once every tier is exhausted."""
    pass


@dataclass(frozen=True)
class RawFix:
    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime
    heading: Optional[float] = None
    speed: Optional[float] = None


FixCallback = Callable[[RawFix], None]
ErrorCallback = Callable[[GeolocationError], None]


class GeolocationSource(ABC):

    @abstractmethod
    def get_current_position(self, options: TierOptions) -> RawFix:
        """
        Blocks the calling flow until one fix is available.
        Raises GeolocationError.
        """

    @abstractmethod
    def watch_position(self, on_fix: FixCallback, on_error: ErrorCallback, options: TierOptions) -> Any:
        """
        Starts continuous delivery and returns a watch id for clear_watch().
        May raise GeolocationError when watching cannot start at all.
        """

    @abstractmethod
    def clear_watch(self, watch_id: Any) -> None:
        """Stops the watch; no callbacks may follow."""
