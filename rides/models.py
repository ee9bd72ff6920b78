"""
Purpose: Core data model for a ride request.
What it does:
Defines RideRequest, the wire format for trip state shared by riders and
drivers through the store. Records are immutable; every lifecycle step
produces a new record via dataclasses.replace.

distance_km and fare are set once at request time and never rewritten.
Completion records a separate final_fare.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from geo.models import Position


class RideStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (RideStatus.PENDING, RideStatus.ACCEPTED, RideStatus.IN_PROGRESS)


class PaymentMethod(str, Enum):
    CASH = "cash"
    UPI = "upi"
    CARD = "card"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_money(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _format_money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass(frozen=True)
class RideRequest:
    id: str
    rider_id: str
    pickup: Position
    drop: Position
    pickup_address: str
    drop_address: str
    distance_km: float
    estimated_minutes: int
    fare: Decimal
    status: RideStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    created_at: datetime

    driver_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None

    final_fare: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    driver_earnings: Optional[Decimal] = None

    rider_rating: Optional[int] = None
    payment_amount: Optional[Decimal] = None

    @classmethod
    def new(
        cls,
        rider_id: str,
        pickup: Position,
        drop: Position,
        distance_km: float,
        estimated_minutes: int,
        fare: Decimal,
        pickup_address: str = "",
        drop_address: str = "",
        payment_method: str | PaymentMethod = PaymentMethod.CASH,
        created_at: datetime | None = None,
    ) -> RideRequest:
        return cls(
            id=str(uuid.uuid4()),
            rider_id=rider_id,
            pickup=pickup,
            drop=drop,
            pickup_address=pickup_address,
            drop_address=drop_address,
            distance_km=distance_km,
            estimated_minutes=estimated_minutes,
            fare=fare,
            status=RideStatus.PENDING,
            payment_method=PaymentMethod(payment_method),
            payment_status=PaymentStatus.PENDING,
            created_at=created_at or datetime.now(timezone.utc),
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in (RideStatus.COMPLETED, RideStatus.CANCELLED)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "riderId": self.rider_id,
            "pickup": self.pickup.to_record(),
            "drop": self.drop.to_record(),
            "pickupAddress": self.pickup_address,
            "dropAddress": self.drop_address,
            "distanceKm": self.distance_km,
            "estimatedMinutes": self.estimated_minutes,
            "fare": _format_money(self.fare),
            "status": self.status.value,
            "driverId": self.driver_id,
            "paymentMethod": self.payment_method.value,
            "paymentStatus": self.payment_status.value,
            "createdAt": _format_time(self.created_at),
            "acceptedAt": _format_time(self.accepted_at),
            "startedAt": _format_time(self.started_at),
            "completedAt": _format_time(self.completed_at),
            "cancelledAt": _format_time(self.cancelled_at),
            "cancellationReason": self.cancellation_reason,
            "cancelledBy": self.cancelled_by,
            "finalFare": _format_money(self.final_fare),
            "commission": _format_money(self.commission),
            "driverEarnings": _format_money(self.driver_earnings),
            "riderRating": self.rider_rating,
            "paymentAmount": _format_money(self.payment_amount),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> RideRequest:
        return cls(
            id=record["id"],
            rider_id=record["riderId"],
            pickup=Position.from_record(record["pickup"]),
            drop=Position.from_record(record["drop"]),
            pickup_address=record.get("pickupAddress") or "",
            drop_address=record.get("dropAddress") or "",
            distance_km=float(record["distanceKm"]),
            estimated_minutes=int(record.get("estimatedMinutes") or 0),
            fare=Decimal(str(record["fare"])),
            status=RideStatus(record["status"]),
            driver_id=record.get("driverId"),
            payment_method=PaymentMethod(record.get("paymentMethod") or PaymentMethod.CASH.value),
            payment_status=PaymentStatus(record.get("paymentStatus") or PaymentStatus.PENDING.value),
            created_at=_parse_time(record["createdAt"]),
            accepted_at=_parse_time(record.get("acceptedAt")),
            started_at=_parse_time(record.get("startedAt")),
            completed_at=_parse_time(record.get("completedAt")),
            cancelled_at=_parse_time(record.get("cancelledAt")),
            cancellation_reason=record.get("cancellationReason"),
            cancelled_by=record.get("cancelledBy"),
            final_fare=_parse_money(record.get("finalFare")),
            commission=_parse_money(record.get("commission")),
            driver_earnings=_parse_money(record.get("driverEarnings")),
            rider_rating=record.get("riderRating"),
            payment_amount=_parse_money(record.get("paymentAmount")),
        )
