"""
Purpose: Fare estimation and the platform/driver commission split.
What it does:
- estimate(km): base fare + per-km rate, rounded to 2 decimals (half up)
- estimate_minutes(km): whole minutes at the tariff's minutes-per-km
- finalize(km, rate): the gross fare split into platform cut and driver
  earnings, where cut + earnings == gross exactly

Money is Decimal throughout; floats only enter as distances and rates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Tuple, Union

from .policy import FareTariff, default_fare_tariff

CENTS = Decimal("0.01")

Number = Union[int, float, Decimal, str]


def to_money(value: Number) -> Decimal:
    # str() first so 0.1 becomes Decimal("0.1") rather than its binary expansion
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Fare:
    amount: Decimal
    currency: str
    distance_km: float

    def to_record(self) -> Dict[str, Any]:
        return {
            "amount": float(self.amount),
            "currency": self.currency,
            "distanceKm": self.distance_km,
        }


@dataclass(frozen=True)
class CommissionSplit:
    """
    Derived from gross_fare and commission_rate on every access; never stored
    as its own source of truth.
    """
    gross_fare: Decimal
    commission_rate: Decimal

    @classmethod
    def of(cls, gross_fare: Number, commission_rate: Number = Decimal("0.10")) -> CommissionSplit:
        gross = to_money(gross_fare)
        rate = Decimal(str(commission_rate))

        if gross < 0:
            raise ValueError("gross fare must be >= 0")
        if not Decimal("0") <= rate <= Decimal("1"):
            raise ValueError("commission rate must be within [0, 1]")

        return cls(gross_fare=gross, commission_rate=rate)

    def _components(self) -> Tuple[Decimal, Decimal]:
        raw_cut = self.gross_fare * self.commission_rate
        cut = to_money(raw_cut)
        earnings = to_money(self.gross_fare - raw_cut)

        # any rounding remainder goes to the larger component
        remainder = self.gross_fare - (cut + earnings)
        if remainder:
            if cut > earnings:
                cut += remainder
            else:
                earnings += remainder
        return cut, earnings

    @property
    def platform_cut(self) -> Decimal:
        return self._components()[0]

    @property
    def driver_earnings(self) -> Decimal:
        return self._components()[1]

    def to_record(self) -> Dict[str, Any]:
        return {
            "grossFare": float(self.gross_fare),
            "platformCut": float(self.platform_cut),
            "driverEarnings": float(self.driver_earnings),
            "commissionRate": float(self.commission_rate),
        }


class FareCalculator:

    def __init__(self, tariff: Optional[FareTariff] = None):
        self.tariff = tariff or default_fare_tariff()
        self.tariff.validate()

    @staticmethod
    def _check_distance(distance_km: float) -> float:
        if isinstance(distance_km, bool) or not isinstance(distance_km, (int, float, Decimal)):
            raise ValueError(f"distance must be a number, got {distance_km!r}")
        distance_km = float(distance_km)
        if not math.isfinite(distance_km) or distance_km < 0:
            raise ValueError(f"distance must be a finite number >= 0, got {distance_km}")
        return distance_km

    def gross_fare(self, distance_km: float) -> Decimal:
        distance_km = self._check_distance(distance_km)
        base = Decimal(str(self.tariff.base_fare))
        per_km = Decimal(str(self.tariff.per_km_rate))
        return to_money(base + per_km * Decimal(str(distance_km)))

    def estimate(self, distance_km: float) -> Fare:
        return Fare(
            amount=self.gross_fare(distance_km),
            currency=self.tariff.currency,
            distance_km=self._check_distance(distance_km),
        )

    def estimate_minutes(self, distance_km: float) -> int:
        distance_km = self._check_distance(distance_km)
        return int(math.ceil(round(distance_km * self.tariff.minutes_per_km, 6)))

    def finalize(self, distance_km: float, commission_rate: Optional[float] = None) -> CommissionSplit:
        rate = self.tariff.commission_rate if commission_rate is None else commission_rate
        return CommissionSplit.of(self.gross_fare(distance_km), rate)

    def split(self, gross_fare: Number, commission_rate: Optional[float] = None) -> CommissionSplit:
        rate = self.tariff.commission_rate if commission_rate is None else commission_rate
        return CommissionSplit.of(gross_fare, rate)
