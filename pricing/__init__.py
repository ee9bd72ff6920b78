#Marks pricing as a package.
#Re-exports the tariff policy and the fare calculator.

from .fare import CommissionSplit, Fare, FareCalculator
from .policy import FareTariff, default_fare_tariff

__all__ = [
    "CommissionSplit",
    "Fare",
    "FareCalculator",
    "FareTariff",
    "default_fare_tariff",
]
