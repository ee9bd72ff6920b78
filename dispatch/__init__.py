#Expose the high-level dispatch pieces:
#Ride lifecycle (guarded transitions against the store)
#Subscription plumbing (snapshots, reconnects, session registry)
#DispatchCoordinator (the "one object" entry point for riders and drivers)

from .dispatcher import DispatchCoordinator, DriverPositionEvent, RideResult
from .exceptions import (
    ActiveRideExists,
    AlreadyAssigned,
    DriverUnavailable,
    InvalidTransition,
    RideNotFound,
    RideStateException,
    UnauthorizedActor,
)
from .lifecycle import RideLifecycle
from .subscriptions import ResilientSubscription, SessionRegistry, SnapshotView

__all__ = [
    "DispatchCoordinator",
    "DriverPositionEvent",
    "RideResult",
    "ActiveRideExists",
    "AlreadyAssigned",
    "DriverUnavailable",
    "InvalidTransition",
    "RideNotFound",
    "RideStateException",
    "UnauthorizedActor",
    "RideLifecycle",
    "ResilientSubscription",
    "SessionRegistry",
    "SnapshotView",
]
