"""
Typed lifecycle failures. The UI branches on these to tell "you lost the
race" apart from "the ride no longer exists".
"""

from typing import Optional


class RideStateException(Exception):
    """Base class for ride lifecycle failures."""
    pass


class InvalidTransition(RideStateException):
    """Raised when an action is not allowed from the ride's current status."""

    def __init__(self, message: str, ride_id: Optional[str] = None, status: Optional[str] = None, action: Optional[str] = None):
        super().__init__(message)
        self.ride_id = ride_id
        self.status = status
        self.action = action


class AlreadyAssigned(InvalidTransition):
    """Another driver won the accept race. An expected outcome, not a fault."""

    def __init__(self, ride_id: str, assigned_driver_id: Optional[str], status: Optional[str] = None):
        super().__init__(
            f"Ride {ride_id} is already assigned to another driver",
            ride_id=ride_id,
            status=status,
            action="accept",
        )
        self.assigned_driver_id = assigned_driver_id


class UnauthorizedActor(RideStateException):
    """Raised when the caller is not the actor the current status authorizes."""
    pass


class RideNotFound(RideStateException):
    """Raised when the ride record does not exist."""
    pass


class DriverUnavailable(RideStateException):
    """Raised when a driver is offline or unknown."""
    pass


class ActiveRideExists(RideStateException):
    """Raised when a rider requests a ride while one is still active."""
    pass
