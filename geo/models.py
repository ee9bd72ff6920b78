"""
Purpose: The position value shared by tracking, matching and rides.
What it does:
Defines Position as an immutable reading. A newer reading always replaces the
previous one; nothing mutates a Position in place.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

LatLon = Tuple[float, float]


class PositionSource(str, Enum):
    MEASURED = "measured"
    PREDICTED = "predicted"


@dataclass(frozen=True)
class Position:
    """
    A single location fix. accuracy is the radius in meters,
    heading is degrees clockwise from north, speed is meters/second.
    """
    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime
    heading: Optional[float] = None
    speed: Optional[float] = None
    source: PositionSource = PositionSource.MEASURED

    @classmethod
    def new(
        cls,
        lat: float,
        lon: float,
        accuracy: float = 0.0,
        timestamp: datetime | None = None,
        heading: float | None = None,
        speed: float | None = None,
        source: str | PositionSource = PositionSource.MEASURED,
    ) -> Position:
        if isinstance(source, str):
            source = PositionSource(source)

        return cls(
            latitude=float(lat),
            longitude=float(lon),
            accuracy=float(accuracy),
            timestamp=timestamp or datetime.now(timezone.utc),
            heading=heading,
            speed=speed,
            source=source,
        )

    @property
    def coordinates(self) -> LatLon:
        return (self.latitude, self.longitude)

    @property
    def is_predicted(self) -> bool:
        return self.source == PositionSource.PREDICTED

    def with_timestamp(self, timestamp: datetime) -> Position:
        return replace(self, timestamp=timestamp)

    def to_record(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "heading": self.heading,
            "speed": self.speed,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source.value,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Position:
        timestamp = record.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)

        return cls.new(
            lat=record["latitude"],
            lon=record["longitude"],
            accuracy=record.get("accuracy") or 0.0,
            timestamp=timestamp,
            heading=record.get("heading"),
            speed=record.get("speed"),
            source=record.get("source") or PositionSource.MEASURED,
        )
