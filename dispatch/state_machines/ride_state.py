from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Dict, Tuple

from dispatch.exceptions import AlreadyAssigned, InvalidTransition, UnauthorizedActor
from pricing.fare import CommissionSplit
from rides.models import RideRequest, RideStatus


class RideAction(str, Enum):
    ACCEPT = "accept"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


# Every (status, action) pair not listed here is rejected.
TRANSITIONS: Dict[Tuple[RideStatus, RideAction], RideStatus] = {
    (RideStatus.PENDING, RideAction.ACCEPT): RideStatus.ACCEPTED,
    (RideStatus.ACCEPTED, RideAction.START): RideStatus.IN_PROGRESS,
    (RideStatus.IN_PROGRESS, RideAction.COMPLETE): RideStatus.COMPLETED,
    (RideStatus.PENDING, RideAction.CANCEL): RideStatus.CANCELLED,
    (RideStatus.ACCEPTED, RideAction.CANCEL): RideStatus.CANCELLED,
}


def next_status(ride: RideRequest, action: RideAction) -> RideStatus:
    try:
        return TRANSITIONS[(ride.status, action)]
    except KeyError:
        raise InvalidTransition(
            f"Cannot {action.value} ride {ride.id} from {ride.status.value}",
            ride_id=ride.id,
            status=ride.status.value,
            action=action.value,
        ) from None


def transition_ride_to_accepted(ride: RideRequest, driver_id: str, now: datetime) -> RideRequest:
    """
    Guard only. The write itself must be a compare-and-set on
    status == pending and driverId == None, done by the lifecycle.
    """
    if ride.driver_id is not None and ride.driver_id != driver_id:
        raise AlreadyAssigned(ride.id, ride.driver_id, ride.status.value)

    status = next_status(ride, RideAction.ACCEPT)

    if ride.driver_id is not None:
        raise AlreadyAssigned(ride.id, ride.driver_id, ride.status.value)

    return replace(ride, status=status, driver_id=driver_id, accepted_at=now)


def transition_ride_to_in_progress(ride: RideRequest, driver_id: str, now: datetime) -> RideRequest:
    status = next_status(ride, RideAction.START)

    if ride.driver_id != driver_id:
        raise UnauthorizedActor(f"Only the assigned driver can start ride {ride.id}")

    return replace(ride, status=status, started_at=now)


def transition_ride_to_completed(ride: RideRequest, driver_id: str, split: CommissionSplit, now: datetime) -> RideRequest:
    """
    Records final_fare next to the request-time fare; fare itself is never rewritten.
    """
    status = next_status(ride, RideAction.COMPLETE)

    if ride.driver_id != driver_id:
        raise UnauthorizedActor(f"Only the assigned driver can complete ride {ride.id}")

    return replace(
        ride,
        status=status,
        completed_at=now,
        final_fare=split.gross_fare,
        commission=split.platform_cut,
        driver_earnings=split.driver_earnings,
    )


def transition_ride_to_cancelled(ride: RideRequest, actor_id: str, reason: str, now: datetime) -> RideRequest:
    status = next_status(ride, RideAction.CANCEL)

    if actor_id != ride.rider_id and (ride.driver_id is None or actor_id != ride.driver_id):
        raise UnauthorizedActor(f"{actor_id} is neither the rider nor the assigned driver of ride {ride.id}")

    return replace(
        ride,
        status=status,
        cancelled_at=now,
        cancellation_reason=reason,
        cancelled_by=actor_id,
    )
