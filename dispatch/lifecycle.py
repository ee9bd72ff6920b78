"""
Purpose: Apply ride state transitions against the shared store.
What it does:
Loads the ride, runs the pure guard from state_machines.ride_state, then
commits with compare_and_set conditioned on the status (and driver) the
guard saw. If the condition no longer holds, the ride is re-read and the
guard re-run so the caller gets the typed reason (AlreadyAssigned,
InvalidTransition, ...).

Earnings and ride counters move only through store.increment.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from drivers.models import DriverStats
from pricing.fare import CommissionSplit, FareCalculator
from rides.models import PaymentMethod, PaymentStatus, RideRequest, RideStatus
from store.base import DocumentStore, StoreUnavailable

from .exceptions import AlreadyAssigned, DriverUnavailable, InvalidTransition, RideNotFound, UnauthorizedActor
from .state_machines.driver_state import (
    apply_rating,
    completion_deltas,
    rider_completion_deltas,
    validate_stars,
)
from .state_machines.ride_state import (
    transition_ride_to_accepted,
    transition_ride_to_cancelled,
    transition_ride_to_completed,
    transition_ride_to_in_progress,
)

logger = logging.getLogger(__name__)

RIDES = "rides"
DRIVERS = "drivers"
RIDERS = "riders"

# set False by the completing CAS, flipped to True once each increment lands
COUNTER_FLAGS = ("driverCountersApplied", "riderCountersApplied")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RideLifecycle:

    def __init__(
        self,
        store: DocumentStore,
        calculator: Optional[FareCalculator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_rating_retries: int = 10,
    ):
        self.store = store
        self.calculator = calculator or FareCalculator()
        self.clock = clock or _utcnow
        self.max_rating_retries = max_rating_retries

    # --- Reads ---

    def load(self, ride_id: str) -> RideRequest:
        record = self.store.get(RIDES, ride_id)
        if record is None:
            raise RideNotFound(f"Ride {ride_id} does not exist")
        return RideRequest.from_record(record)

    def create(self, ride: RideRequest) -> RideRequest:
        self.store.upsert(RIDES, ride.id, ride.to_record())
        return ride

    # --- Transitions ---

    def accept(self, ride_id: str, driver_id: str) -> RideRequest:
        driver = self.store.get(DRIVERS, driver_id)
        if driver is None or not driver.get("isOnline"):
            raise DriverUnavailable(f"Driver {driver_id} is not online")

        ride = self.load(ride_id)
        accepted = transition_ride_to_accepted(ride, driver_id, self.clock())

        committed = self.store.compare_and_set(
            RIDES,
            ride_id,
            expected={"status": RideStatus.PENDING.value, "driverId": None},
            updates={
                "status": accepted.status.value,
                "driverId": driver_id,
                "acceptedAt": accepted.accepted_at.isoformat(),
            },
        )
        if not committed:
            current = self.load(ride_id)
            logger.info("Driver %s lost the accept race for ride %s to %s", driver_id, ride_id, current.driver_id)
            # re-running the guard raises AlreadyAssigned or InvalidTransition
            transition_ride_to_accepted(current, driver_id, self.clock())
            raise AlreadyAssigned(ride_id, current.driver_id, current.status.value)

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        return accepted

    def start(self, ride_id: str, driver_id: str) -> RideRequest:
        ride = self.load(ride_id)
        started = transition_ride_to_in_progress(ride, driver_id, self.clock())

        self._commit(
            ride,
            expected={"status": RideStatus.ACCEPTED.value, "driverId": driver_id},
            updates={"status": started.status.value, "startedAt": started.started_at.isoformat()},
            recheck=lambda current: transition_ride_to_in_progress(current, driver_id, self.clock()),
        )
        return started

    def complete(self, ride_id: str, driver_id: str) -> Tuple[RideRequest, CommissionSplit]:
        """
        Completing again after a failed counter update finishes the update
        instead of raising.
        """
        ride = self.load(ride_id)
        if ride.status == RideStatus.COMPLETED and ride.driver_id == driver_id:
            record = self.store.get(RIDES, ride_id) or {}
            if any(record.get(flag) is False for flag in COUNTER_FLAGS):
                split = CommissionSplit.of(ride.final_fare, record.get("commissionRate", 0))
                logger.info("Ride %s already completed; settling its remaining counters", ride_id)
                self._settle_counters(ride, split)
                return ride, split

        split = self.calculator.finalize(ride.distance_km)
        completed = transition_ride_to_completed(ride, driver_id, split, self.clock())

        updates = {
            "status": completed.status.value,
            "completedAt": completed.completed_at.isoformat(),
            "finalFare": float(split.gross_fare),
            "commission": float(split.platform_cut),
            "commissionRate": float(split.commission_rate),
            "driverEarnings": float(split.driver_earnings),
        }
        updates.update(dict.fromkeys(COUNTER_FLAGS, False))

        self._commit(
            ride,
            expected={"status": RideStatus.IN_PROGRESS.value, "driverId": driver_id},
            updates=updates,
            recheck=lambda current: transition_ride_to_completed(current, driver_id, split, self.clock()),
        )
        self._settle_counters(completed, split)

        logger.info(
            "Ride %s completed: fare %s, driver earns %s",
            ride_id, split.gross_fare, split.driver_earnings,
        )
        return completed, split

    def _settle_counters(self, ride: RideRequest, split: CommissionSplit) -> None:
        pending = zip(
            COUNTER_FLAGS,
            ((DRIVERS, ride.driver_id, completion_deltas(split)), (RIDERS, ride.rider_id, rider_completion_deltas())),
        )
        for flag, (collection, doc_id, deltas) in pending:
            record = self.store.get(RIDES, ride.id) or {}
            if record.get(flag) is not False:
                continue
            self.store.increment(collection, doc_id, deltas)
            self.store.compare_and_set(RIDES, ride.id, {flag: False}, {flag: True})

    def cancel(self, ride_id: str, actor_id: str, reason: str = "") -> RideRequest:
        ride = self.load(ride_id)
        cancelled = transition_ride_to_cancelled(ride, actor_id, reason, self.clock())

        self._commit(
            ride,
            expected={"status": ride.status.value, "driverId": ride.driver_id},
            updates={
                "status": cancelled.status.value,
                "cancelledAt": cancelled.cancelled_at.isoformat(),
                "cancellationReason": reason,
                "cancelledBy": actor_id,
            },
            recheck=lambda current: transition_ride_to_cancelled(current, actor_id, reason, self.clock()),
        )

        logger.info("Ride %s cancelled by %s", ride_id, actor_id)
        return cancelled

    def _commit(
        self,
        ride: RideRequest,
        expected: Mapping[str, Any],
        updates: Dict[str, Any],
        recheck: Callable[[RideRequest], RideRequest],
    ) -> None:
        if self.store.compare_and_set(RIDES, ride.id, expected, updates):
            return

        current = self.load(ride.id)
        recheck(current)
        raise InvalidTransition(
            f"Ride {ride.id} changed concurrently (now {current.status.value})",
            ride_id=ride.id,
            status=current.status.value,
        )

    # --- After completion ---

    def rate_driver(self, ride_id: str, rider_id: str, stars: int) -> float:
        """
        One rating per completed ride, by its rider. Returns the driver's new average.
        """
        validate_stars(stars)
        ride = self.load(ride_id)

        if ride.rider_id != rider_id:
            raise UnauthorizedActor(f"Only the rider of ride {ride_id} can rate it")

        if ride.status != RideStatus.COMPLETED:
            raise InvalidTransition(
                f"Cannot rate ride {ride_id} from {ride.status.value}",
                ride_id=ride_id, status=ride.status.value, action="rate",
            )

        claimed = self.store.compare_and_set(
            RIDES,
            ride_id,
            expected={"status": RideStatus.COMPLETED.value, "riderRating": None},
            updates={"riderRating": stars},
        )
        if not claimed:
            raise InvalidTransition(f"Ride {ride_id} was already rated", ride_id=ride_id, status=ride.status.value, action="rate")

        for _ in range(self.max_rating_retries):
            record = self.store.get(DRIVERS, ride.driver_id) or {"id": ride.driver_id}
            fields = apply_rating(DriverStats.from_record(record), stars)

            if self.store.compare_and_set(DRIVERS, ride.driver_id, {"totalRatings": record.get("totalRatings")}, fields):
                return fields["rating"]

        raise StoreUnavailable(f"Rating update for driver {ride.driver_id} kept conflicting")

    def record_payment(self, ride_id: str, driver_id: str, method: str | PaymentMethod) -> RideRequest:
        """
        The assigned driver confirms payment for a completed ride.
        The amount collected is the final fare.
        """
        method = PaymentMethod(method)
        ride = self.load(ride_id)

        if ride.status != RideStatus.COMPLETED or ride.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(
                f"Cannot record payment for ride {ride_id} ({ride.status.value}, payment {ride.payment_status.value})",
                ride_id=ride_id, status=ride.status.value, action="pay",
            )

        if ride.driver_id != driver_id:
            raise UnauthorizedActor(f"Only the assigned driver can record payment for ride {ride_id}")

        committed = self.store.compare_and_set(
            RIDES,
            ride_id,
            expected={"status": RideStatus.COMPLETED.value, "paymentStatus": PaymentStatus.PENDING.value},
            updates={
                "paymentStatus": PaymentStatus.COMPLETED.value,
                "paymentMethod": method.value,
                "paymentAmount": float(ride.final_fare),
            },
        )
        if not committed:
            raise InvalidTransition(f"Payment for ride {ride_id} was already recorded", ride_id=ride_id, status=ride.status.value, action="pay")

        return self.load(ride_id)
