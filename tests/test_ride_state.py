from dataclasses import replace
from decimal import Decimal

import pytest

from conftest import T0
from dispatch.exceptions import AlreadyAssigned, InvalidTransition, UnauthorizedActor
from dispatch.state_machines.driver_state import (
    DriverStateException,
    apply_rating,
    completion_deltas,
)
from dispatch.state_machines.ride_state import (
    TRANSITIONS,
    RideAction,
    next_status,
    transition_ride_to_accepted,
    transition_ride_to_cancelled,
    transition_ride_to_completed,
    transition_ride_to_in_progress,
)
from drivers.models import DriverStats
from geo.models import Position
from pricing.fare import CommissionSplit
from rides.models import RideRequest, RideStatus


@pytest.fixture
def ride():
    return RideRequest.new(
        rider_id="rider_1",
        pickup=Position.new(0.0, 0.0, timestamp=T0),
        drop=Position.new(0.0, 0.009, timestamp=T0),
        distance_km=1.2,
        estimated_minutes=4,
        fare=Decimal("100.00"),
        created_at=T0,
    )


def in_status(ride, status, driver_id="driver_1"):
    return replace(ride, status=status, driver_id=None if status == RideStatus.PENDING else driver_id)


ALLOWED = {
    (RideStatus.PENDING, RideAction.ACCEPT),
    (RideStatus.ACCEPTED, RideAction.START),
    (RideStatus.IN_PROGRESS, RideAction.COMPLETE),
    (RideStatus.PENDING, RideAction.CANCEL),
    (RideStatus.ACCEPTED, RideAction.CANCEL),
}


def test_transition_table_is_exactly_the_lifecycle_graph():
    assert set(TRANSITIONS) == ALLOWED
    assert TRANSITIONS[(RideStatus.IN_PROGRESS, RideAction.COMPLETE)] == RideStatus.COMPLETED


@pytest.mark.parametrize(
    "status, action",
    [
        (status, action)
        for status in RideStatus
        for action in RideAction
        if (status, action) not in ALLOWED
    ],
)
def test_every_unlisted_pair_is_an_invalid_transition(ride, status, action):
    with pytest.raises(InvalidTransition):
        next_status(in_status(ride, status), action)


@pytest.mark.parametrize("status", [RideStatus.ACCEPTED, RideStatus.IN_PROGRESS, RideStatus.COMPLETED, RideStatus.CANCELLED])
def test_accepting_a_taken_ride_is_already_assigned(ride, status):
    taken = in_status(ride, status, driver_id="driver_2")

    with pytest.raises(AlreadyAssigned) as info:
        transition_ride_to_accepted(taken, "driver_1", T0)

    # 1. Assert losing the race is still an invalid transition for generic handlers
    assert isinstance(info.value, InvalidTransition)
    assert info.value.assigned_driver_id == "driver_2"


def test_accept_sets_driver_and_time(ride):
    accepted = transition_ride_to_accepted(ride, "driver_1", T0)

    assert accepted.status == RideStatus.ACCEPTED
    assert accepted.driver_id == "driver_1"
    assert accepted.accepted_at == T0

    # the original record is untouched
    assert ride.status == RideStatus.PENDING
    assert ride.driver_id is None


def test_accepting_twice_as_same_driver_is_invalid(ride):
    accepted = transition_ride_to_accepted(ride, "driver_1", T0)

    with pytest.raises(InvalidTransition) as info:
        transition_ride_to_accepted(accepted, "driver_1", T0)
    assert not isinstance(info.value, AlreadyAssigned)


def test_only_assigned_driver_can_start_or_complete(ride):
    accepted = in_status(ride, RideStatus.ACCEPTED)

    with pytest.raises(UnauthorizedActor):
        transition_ride_to_in_progress(accepted, "driver_2", T0)

    started = transition_ride_to_in_progress(accepted, "driver_1", T0)
    assert started.started_at == T0

    split = CommissionSplit.of("100.00")
    with pytest.raises(UnauthorizedActor):
        transition_ride_to_completed(started, "driver_2", split, T0)

    completed = transition_ride_to_completed(started, "driver_1", split, T0)
    assert completed.final_fare == Decimal("100.00")
    assert completed.commission == Decimal("10.00")
    assert completed.driver_earnings == Decimal("90.00")
    # the request-time estimate is never rewritten
    assert completed.fare == ride.fare


def test_cancel_by_rider_or_assigned_driver_only(ride):
    accepted = in_status(ride, RideStatus.ACCEPTED)

    by_rider = transition_ride_to_cancelled(accepted, "rider_1", "changed plans", T0)
    assert by_rider.status == RideStatus.CANCELLED
    assert by_rider.cancelled_by == "rider_1"
    assert by_rider.cancellation_reason == "changed plans"
    assert by_rider.cancelled_at == T0

    by_driver = transition_ride_to_cancelled(accepted, "driver_1", "vehicle issue", T0)
    assert by_driver.cancelled_by == "driver_1"

    with pytest.raises(UnauthorizedActor):
        transition_ride_to_cancelled(accepted, "stranger", "", T0)


def test_in_progress_ride_cannot_be_cancelled(ride):
    with pytest.raises(InvalidTransition):
        transition_ride_to_cancelled(in_status(ride, RideStatus.IN_PROGRESS), "rider_1", "", T0)


def test_completion_deltas_move_all_counters_together():
    deltas = completion_deltas(CommissionSplit.of("100.00"))

    assert deltas == {"todayEarnings": 90.0, "totalEarnings": 90.0, "todayRides": 1, "totalRides": 1}


def test_rating_is_a_running_average():
    stats = DriverStats(driver_id="d1", rating=4.0, total_ratings=3)

    fields = apply_rating(stats, 5)

    assert fields["rating"] == pytest.approx(4.25)
    assert fields["totalRatings"] == 4


@pytest.mark.parametrize("stars", [0, 6, 4.5, True, "5"])
def test_rating_must_be_whole_stars(stars):
    with pytest.raises(DriverStateException):
        apply_rating(DriverStats(driver_id="d1"), stars)


def test_ride_record_round_trip(ride):
    completed = replace(
        ride,
        status=RideStatus.COMPLETED,
        driver_id="driver_1",
        accepted_at=T0,
        final_fare=Decimal("100.00"),
        commission=Decimal("10.00"),
        driver_earnings=Decimal("90.00"),
    )
    record = completed.to_record()

    assert record["status"] == "completed"
    assert record["riderId"] == "rider_1"
    assert record["paymentStatus"] == "pending"
    assert RideRequest.from_record(record) == completed
