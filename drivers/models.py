"""
Purpose: Core data models for the drivers domain.
What it does:
Defines a driver's availability (where they are, whether they take rides) and
their aggregate counters, independent of the store that persists them.
Availability is written only by the owning driver and read by many riders.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from geo.models import Position


class VehicleType(str, Enum):
    BIKE = "bike"
    AUTO = "auto"
    CAR = "car"

    @classmethod
    def parse(cls, raw: Any) -> VehicleType:
        """
        Lenient mapping of free-text vehicle descriptions; unknown text is a bike.
        """
        if isinstance(raw, VehicleType):
            return raw

        text = str(raw or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            pass

        if any(word in text for word in ("car", "sedan", "suv")):
            return cls.CAR
        if any(word in text for word in ("auto", "rick")):
            return cls.AUTO
        return cls.BIKE


@dataclass(frozen=True)
class DriverAvailability:
    """
    A driver's matchable state at a specific point in time.
    """
    driver_id: str
    location: Position
    is_online: bool
    vehicle_type: VehicleType = VehicleType.BIKE
    rating: float = 0.0

    @classmethod
    def new(
        cls,
        driver_id: str,
        lat: float,
        lon: float,
        is_online: bool = True,
        vehicle_type: str | VehicleType = VehicleType.BIKE,
        rating: float = 0.0,
    ) -> DriverAvailability:
        return cls(
            driver_id=driver_id,
            location=Position.new(lat, lon),
            is_online=is_online,
            vehicle_type=VehicleType.parse(vehicle_type),
            rating=float(rating),
        )

    def with_location(self, location: Position) -> DriverAvailability:
        return replace(self, location=location)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.driver_id,
            "location": self.location.to_record(),
            "isOnline": self.is_online,
            "vehicleType": self.vehicle_type.value,
            "rating": self.rating,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> DriverAvailability:
        """
        Raises KeyError when the record has no location yet.
        """
        return cls(
            driver_id=record["id"],
            location=Position.from_record(record["location"]),
            is_online=bool(record.get("isOnline", False)),
            vehicle_type=VehicleType.parse(record.get("vehicleType")),
            rating=float(record.get("rating") or 0.0),
        )


@dataclass(frozen=True)
class DriverStats:
    """
    Aggregate counters kept on the driver record. Only ever changed through
    atomic increments (earnings, ride counts) or a CAS loop (rating).
    """
    driver_id: str
    today_earnings: Decimal = Decimal("0")
    total_earnings: Decimal = Decimal("0")
    today_rides: int = 0
    total_rides: int = 0
    rating: float = 0.0
    total_ratings: int = 0

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> DriverStats:
        return cls(
            driver_id=record["id"],
            today_earnings=Decimal(str(record.get("todayEarnings") or 0)),
            total_earnings=Decimal(str(record.get("totalEarnings") or 0)),
            today_rides=int(record.get("todayRides") or 0),
            total_rides=int(record.get("totalRides") or 0),
            rating=float(record.get("rating") or 0.0),
            total_ratings=int(record.get("totalRatings") or 0),
        )
