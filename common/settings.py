"""
Purpose: Deployment settings read from the environment.
What it does:
Loads a .env file (python-dotenv) and exposes the values as a frozen Settings
object. The policy objects used by the engines are derived from it so the
same .env drives distance, matching, pricing and the backing store.

Example .env:
STORE_URL=https://my-project-default-rtdb.firebaseio.com
STORE_AUTH_TOKEN=...
FARE_BASE=25
FARE_PER_KM=12
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """
    Environment-level configuration. Everything has a sane local default so
    the in-memory store and default tariff work without a .env file.
    """

    store_url: Optional[str] = None
    store_auth_token: Optional[str] = None
    store_timeout_s: float = 5.0

    log_level: str = "INFO"

    fare_base: float = 25.0
    fare_per_km: float = 12.0
    fare_currency: str = "INR"
    commission_rate: float = 0.10

    road_correction_factor: float = 1.2
    match_radius_km: float = 10.0

    @classmethod
    def from_env(cls) -> Settings:
        defaults = cls()
        return cls(
            store_url=os.getenv("STORE_URL") or None,
            store_auth_token=os.getenv("STORE_AUTH_TOKEN") or None,
            store_timeout_s=_env_float("STORE_TIMEOUT", defaults.store_timeout_s),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            fare_base=_env_float("FARE_BASE", defaults.fare_base),
            fare_per_km=_env_float("FARE_PER_KM", defaults.fare_per_km),
            fare_currency=os.getenv("FARE_CURRENCY", defaults.fare_currency),
            commission_rate=_env_float("COMMISSION_RATE", defaults.commission_rate),
            road_correction_factor=_env_float("ROAD_CORRECTION_FACTOR", defaults.road_correction_factor),
            match_radius_km=_env_float("MATCH_RADIUS_KM", defaults.match_radius_km),
        )

    # policies are imported lazily: common is imported by the packages below it

    def distance_policy(self):
        from geo.policy import DistancePolicy

        p = DistancePolicy(road_correction_factor=self.road_correction_factor)
        p.validate()
        return p

    def matching_policy(self):
        from drivers.policy import MatchingPolicy

        p = MatchingPolicy(radius_km=self.match_radius_km)
        p.validate()
        return p

    def fare_tariff(self):
        from pricing.policy import FareTariff

        p = FareTariff(
            base_fare=self.fare_base,
            per_km_rate=self.fare_per_km,
            currency=self.fare_currency,
            commission_rate=self.commission_rate,
        )
        p.validate()
        return p


def build_store(settings: Optional[Settings] = None):
    """
    Returns the Firebase REST adapter when STORE_URL is configured,
    otherwise a process-local in-memory store.
    """
    settings = settings or Settings.from_env()

    if settings.store_url:
        from store.firebase_rest import FirebaseRestStore

        return FirebaseRestStore(
            base_url=settings.store_url,
            auth_token=settings.store_auth_token,
            timeout=settings.store_timeout_s,
        )

    from store.memory import InMemoryDocumentStore

    return InMemoryDocumentStore()


def configure_logging(level: Optional[str] = None) -> None:
    """
    For scripts and entry points only; library modules just use getLogger.
    """
    level = level or Settings.from_env().log_level
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
