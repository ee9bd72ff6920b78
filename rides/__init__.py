#Marks rides as a package.
#Re-exports the ride request record and its enums.

from .models import ACTIVE_STATUSES, PaymentMethod, PaymentStatus, RideRequest, RideStatus

__all__ = [
    "ACTIVE_STATUSES",
    "PaymentMethod",
    "PaymentStatus",
    "RideRequest",
    "RideStatus",
]
