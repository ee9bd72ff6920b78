"""
Purpose: Central configuration for pricing.
What it does:

Stores the tariff applied to a trip distance:

BASE_FARE = 25
PER_KM_RATE = 12
COMMISSION_RATE = 0.10 (platform share of the gross fare)
MINUTES_PER_KM = 3 (urban time estimate)

Rule: No logic here. Prices change by editing the tariff, not the calculator.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FareTariff:
    """
    Central configuration for fares and commission.
    """

    # --- Tariff ---
    base_fare: float = 25.0
    per_km_rate: float = 12.0
    currency: str = "INR"

    # --- Platform share ---
    commission_rate: float = 0.10

    # --- Time estimate ---
    minutes_per_km: float = 3.0

    def validate(self) -> None:
        if self.base_fare < 0:
            raise ValueError("base_fare must be >= 0")

        # a zero rate would make the fare flat, not increasing with distance
        if self.per_km_rate <= 0:
            raise ValueError("per_km_rate must be > 0")

        if not 0 <= self.commission_rate <= 1:
            raise ValueError("commission_rate must be within [0, 1]")

        if self.minutes_per_km <= 0:
            raise ValueError("minutes_per_km must be > 0")

        if not self.currency:
            raise ValueError("currency must be set")


def default_fare_tariff() -> FareTariff:
    """
    Convenience factory for the default tariff.
    """
    p = FareTariff()
    p.validate()
    return p
