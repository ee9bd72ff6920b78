import threading
from decimal import Decimal

import pytest

from conftest import T0
from dispatch.dispatcher import DispatchCoordinator
from dispatch.exceptions import (
    ActiveRideExists,
    DriverUnavailable,
    InvalidTransition,
    RideNotFound,
    UnauthorizedActor,
)
from geo.distance import GeoInputError
from geo.models import Position
from rides.models import PaymentStatus, RideStatus
from store.base import StoreUnavailable
from store.memory import InMemoryDocumentStore

PICKUP = (0.0, 0.0)
DROP = (0.0, 0.009)


@pytest.fixture
def online(coordinator):
    for driver_id in ("d1", "d2"):
        coordinator.go_online(driver_id, Position.new(0.0, 0.001, timestamp=T0), "bike", rating=4.5)
    return coordinator


def ride_through_to(coordinator, status, rider_id="rider_1", driver_id="d1"):
    ride = coordinator.request_ride(rider_id, PICKUP, DROP)
    if status == RideStatus.PENDING:
        return ride
    coordinator.accept_ride(ride.id, driver_id)
    if status == RideStatus.ACCEPTED:
        return ride
    coordinator.start_ride(ride.id, driver_id)
    if status == RideStatus.IN_PROGRESS:
        return ride
    coordinator.complete_ride(ride.id, driver_id)
    return ride


def test_request_freezes_distance_fare_and_eta(coordinator, store):
    ride = coordinator.request_ride("rider_1", PICKUP, DROP, "Gate 1", "Gate 2")

    # 1. Assert the road distance is stored at two decimals
    assert ride.distance_km == 1.2

    # 2. Assert fare and ETA come from that one distance
    assert ride.fare == Decimal("100.00")
    assert ride.estimated_minutes == 4

    # 3. Assert the record landed in the store as pending with no driver
    record = store.get("rides", ride.id)
    assert record["status"] == "pending"
    assert record["driverId"] is None
    assert record["distanceKm"] == 1.2
    assert record["pickupAddress"] == "Gate 1"
    assert record["createdAt"] == T0.isoformat()


def test_rider_cannot_hold_two_active_rides(online):
    first = online.request_ride("rider_1", PICKUP, DROP)

    with pytest.raises(ActiveRideExists):
        online.request_ride("rider_1", PICKUP, DROP)

    online.cancel_ride(first.id, "rider_1", "wrong pickup")
    assert online.request_ride("rider_1", PICKUP, DROP).status == RideStatus.PENDING


def test_invalid_coordinates_store_nothing(coordinator, store):
    with pytest.raises(GeoInputError):
        coordinator.request_ride("rider_1", (float("nan"), 0.0), DROP)
    assert store.query("rides") == []


def test_scenario_b_concurrent_accepts_assign_exactly_one_driver(online, store):
    ride = online.request_ride("rider_1", PICKUP, DROP)
    barrier = threading.Barrier(2)
    results = {}

    def tap(driver_id):
        barrier.wait()
        results[driver_id] = online.accept_ride(ride.id, driver_id)

    threads = [threading.Thread(target=tap, args=(d,)) for d in ("d1", "d2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [d for d, r in results.items() if r.success]
    losers = [r for r in results.values() if not r.success]

    # 1. Assert exactly one driver won and the other got the expected outcome
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].error_code == "already_assigned"
    assert results[winners[0]].ride.driver_id == winners[0]

    # 2. Assert the stored record agrees
    record = store.get("rides", ride.id)
    assert record["status"] == "accepted"
    assert record["driverId"] == winners[0]


def test_many_rounds_of_racing_never_double_assign(online, store):
    for round_number in range(20):
        ride = online.request_ride(f"rider_{round_number}", PICKUP, DROP)
        barrier = threading.Barrier(2)
        outcomes = []

        def tap(driver_id):
            barrier.wait()
            outcomes.append(online.accept_ride(ride.id, driver_id).success)

        threads = [threading.Thread(target=tap, args=(d,)) for d in ("d1", "d2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == [False, True]


def test_sequential_loser_sees_already_assigned(online):
    ride = online.request_ride("rider_1", PICKUP, DROP)

    assert online.accept_ride(ride.id, "d1").success
    result = online.accept_ride(ride.id, "d2")

    assert not result.success
    assert result.error_code == "already_assigned"
    assert result.ride is None


def test_offline_driver_cannot_accept(online):
    ride = online.request_ride("rider_1", PICKUP, DROP)
    online.go_offline("d1")

    with pytest.raises(DriverUnavailable):
        online.accept_ride(ride.id, "d1")
    with pytest.raises(DriverUnavailable):
        online.accept_ride(ride.id, "ghost")


def test_cancelled_ride_cannot_be_accepted(online):
    ride = online.request_ride("rider_1", PICKUP, DROP)
    online.cancel_ride(ride.id, "rider_1")

    with pytest.raises(InvalidTransition):
        online.accept_ride(ride.id, "d1")


def test_full_trip_scenario_e_and_counters(online, store):
    ride = online.request_ride("rider_1", PICKUP, DROP)
    online.accept_ride(ride.id, "d1")
    online.start_ride(ride.id, "d1")

    split = online.complete_ride(ride.id, "d1")

    # 1. Assert the commission split
    assert split.gross_fare == Decimal("100.00")
    assert split.platform_cut == Decimal("10.00")
    assert split.driver_earnings == Decimal("90.00")

    # 2. Assert the ride record carries the final numbers beside the frozen estimate
    record = store.get("rides", ride.id)
    assert record["status"] == "completed"
    assert record["finalFare"] == 100.0
    assert record["commission"] == 10.0
    assert record["fare"] == 100.0
    assert record["startedAt"] is not None
    assert record["completedAt"] is not None

    # 3. Assert the driver and rider counters moved once
    driver = store.get("drivers", "d1")
    assert driver["todayEarnings"] == 90.0
    assert driver["totalEarnings"] == 90.0
    assert driver["todayRides"] == 1
    assert driver["totalRides"] == 1
    assert store.get("riders", "rider_1")["completedRides"] == 1


def test_completing_twice_does_not_double_count(online, store):
    ride = ride_through_to(online, RideStatus.COMPLETED)

    with pytest.raises(InvalidTransition):
        online.complete_ride(ride.id, "d1")
    assert store.get("drivers", "d1")["totalRides"] == 1


class IncrementFailsOnce(InMemoryDocumentStore):
    def __init__(self, collection):
        super().__init__()
        self.failing_collection = collection

    def increment(self, collection, doc_id, deltas):
        if collection == self.failing_collection:
            self.failing_collection = None
            raise StoreUnavailable("connection reset")
        return super().increment(collection, doc_id, deltas)


@pytest.mark.parametrize("failing", ["drivers", "riders"])
def test_completing_again_after_a_failed_counter_update_settles_it(failing, calculator, clock, ticker):
    store = IncrementFailsOnce(failing)
    coordinator = DispatchCoordinator(store, calculator=calculator, clock=clock, ticker=ticker)
    coordinator.go_online("d1", Position.new(0.0, 0.001, timestamp=T0), "bike")
    ride = ride_through_to(coordinator, RideStatus.IN_PROGRESS)

    with pytest.raises(StoreUnavailable):
        coordinator.complete_ride(ride.id, "d1")
    assert store.get("rides", ride.id)["status"] == "completed"

    split = coordinator.complete_ride(ride.id, "d1")

    # 1. Assert the retry returns the same split
    assert split.gross_fare == Decimal("100.00")
    assert split.driver_earnings == Decimal("90.00")

    # 2. Assert every counter moved exactly once
    driver = store.get("drivers", "d1")
    assert driver["totalEarnings"] == 90.0
    assert driver["totalRides"] == 1
    assert store.get("riders", "rider_1")["completedRides"] == 1

    # 3. Assert a third attempt is an ordinary invalid transition
    with pytest.raises(InvalidTransition):
        coordinator.complete_ride(ride.id, "d1")
    assert store.get("drivers", "d1")["totalRides"] == 1

    coordinator.close()


def test_earnings_accumulate_across_rides(online, store):
    ride_through_to(online, RideStatus.COMPLETED, rider_id="rider_1")
    ride_through_to(online, RideStatus.COMPLETED, rider_id="rider_2")

    driver = store.get("drivers", "d1")
    assert driver["totalEarnings"] == 180.0
    assert driver["totalRides"] == 2


def test_only_the_assigned_driver_can_drive(online):
    ride = ride_through_to(online, RideStatus.ACCEPTED)

    with pytest.raises(UnauthorizedActor):
        online.start_ride(ride.id, "d2")

    online.start_ride(ride.id, "d1")
    with pytest.raises(UnauthorizedActor):
        online.complete_ride(ride.id, "d2")


def test_start_before_accept_is_invalid(online):
    ride = online.request_ride("rider_1", PICKUP, DROP)
    with pytest.raises(InvalidTransition):
        online.start_ride(ride.id, "d1")


def test_cancel_records_the_audit_trail(online, store):
    ride = ride_through_to(online, RideStatus.ACCEPTED)

    cancelled = online.cancel_ride(ride.id, "d1", "flat tyre")

    record = store.get("rides", ride.id)
    assert cancelled.status == RideStatus.CANCELLED
    assert record["status"] == "cancelled"
    assert record["cancelledBy"] == "d1"
    assert record["cancellationReason"] == "flat tyre"
    assert record["cancelledAt"] == T0.isoformat()


def test_in_progress_ride_cannot_be_cancelled(online):
    ride = ride_through_to(online, RideStatus.IN_PROGRESS)
    with pytest.raises(InvalidTransition):
        online.cancel_ride(ride.id, "rider_1")


def test_stranger_cannot_cancel(online):
    ride = online.request_ride("rider_1", PICKUP, DROP)
    with pytest.raises(UnauthorizedActor):
        online.cancel_ride(ride.id, "someone_else")


def test_unknown_ride(online):
    with pytest.raises(RideNotFound):
        online.start_ride("missing", "d1")


def test_rating_once_per_completed_ride(online, store):
    ride = ride_through_to(online, RideStatus.COMPLETED)

    # no previous ratings: the first one becomes the average
    assert online.rate_driver(ride.id, "rider_1", 4) == 4.0
    assert store.get("rides", ride.id)["riderRating"] == 4

    with pytest.raises(InvalidTransition):
        online.rate_driver(ride.id, "rider_1", 5)

    second = ride_through_to(online, RideStatus.COMPLETED, rider_id="rider_2")
    assert online.rate_driver(second.id, "rider_2", 5) == pytest.approx(4.5)
    assert store.get("drivers", "d1")["totalRatings"] == 2


def test_rating_guards(online):
    ride = ride_through_to(online, RideStatus.ACCEPTED)

    with pytest.raises(InvalidTransition):
        online.rate_driver(ride.id, "rider_1", 5)

    online.start_ride(ride.id, "d1")
    online.complete_ride(ride.id, "d1")

    with pytest.raises(UnauthorizedActor):
        online.rate_driver(ride.id, "rider_2", 5)


def test_payment_is_recorded_once_by_the_driver(online, store):
    ride = ride_through_to(online, RideStatus.COMPLETED)

    with pytest.raises(UnauthorizedActor):
        online.record_payment(ride.id, "d2", "upi")

    paid = online.record_payment(ride.id, "d1", "upi")

    assert paid.payment_status == PaymentStatus.COMPLETED
    assert paid.payment_amount == Decimal("100")
    assert store.get("rides", ride.id)["paymentMethod"] == "upi"

    with pytest.raises(InvalidTransition):
        online.record_payment(ride.id, "d1", "cash")


def test_payment_before_completion_is_invalid(online):
    ride = ride_through_to(online, RideStatus.IN_PROGRESS)
    with pytest.raises(InvalidTransition):
        online.record_payment(ride.id, "d1", "cash")
