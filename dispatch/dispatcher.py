"""
Purpose: Orchestrator between trackers, matching and the ride lifecycle (the "glue").
What it does:
Exposes the dispatch actions (request / accept / start / complete / cancel),
relays driver positions from LocationTrackers into the store, and keeps
riders and drivers up to date through store subscriptions:
- drivers see pending requests, newest first
- riders see their active ride, and online drivers ranked by distance
It holds no ride state of its own beyond each subscription's snapshot.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from common.events import EventChannel, Subscription
from drivers.models import DriverAvailability, VehicleType
from drivers.selection import DriverCandidate, ProximityMatcher
from geo.distance import GeoDistanceEngine, coordinates_of
from geo.models import Position
from pricing.fare import CommissionSplit, FareCalculator
from rides.models import ACTIVE_STATUSES, PaymentMethod, RideRequest, RideStatus
from store.base import ChangeEvent, DocumentStore, ErrorCallback, Filters
from tracking.models import LocationUpdate
from tracking.ticker import ThreadingTicker, Ticker
from tracking.tracker import LocationTracker

from .exceptions import ActiveRideExists, AlreadyAssigned, DriverUnavailable
from .lifecycle import DRIVERS, RIDES, RideLifecycle
from .subscriptions import ResilientSubscription, SessionRegistry, SnapshotView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RideResult:
    """
    Outcome of accept_ride. Losing the race is a normal result, not an exception.
    """
    success: bool
    ride: Optional[RideRequest] = None
    message: str = ""
    error_code: Optional[str] = None


@dataclass(frozen=True)
class DriverPositionEvent:
    driver_id: str
    location: Position
    timestamp: datetime

    def to_record(self) -> Dict[str, Any]:
        return {
            "driverId": self.driver_id,
            "location": self.location.to_record(),
            "timestamp": self.timestamp.isoformat(),
        }


def _as_position(point: Any) -> Position:
    if isinstance(point, Position):
        coordinates_of(point)
        return point
    lat, lon = coordinates_of(point)
    return Position.new(lat, lon)


def _parse_drivers(records: List[Dict[str, Any]]) -> List[DriverAvailability]:
    drivers = []
    for record in records:
        if not record.get("location"):
            continue
        try:
            drivers.append(DriverAvailability.from_record(record))
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("Skipping unreadable driver record %s: %s", record.get("id"), error)
    return drivers


class DispatchCoordinator:
    """
    One per app process. Every watch_* call returns a Subscription and is
    also registered under a session id, so close_session(session_id) or
    close() always leaves nothing registered against the store.
    """

    def __init__(
        self,
        store: DocumentStore,
        engine: Optional[GeoDistanceEngine] = None,
        matcher: Optional[ProximityMatcher] = None,
        calculator: Optional[FareCalculator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        ticker: Optional[Ticker] = None,
    ):
        self.store = store
        self.engine = engine or GeoDistanceEngine()
        self.matcher = matcher or ProximityMatcher(engine=self.engine)
        self.calculator = calculator or FareCalculator()
        self.ticker = ticker or ThreadingTicker()
        self.lifecycle = RideLifecycle(store, calculator=self.calculator, clock=clock)
        self.sessions = SessionRegistry()
        self.driver_positions: EventChannel[DriverPositionEvent] = EventChannel("driver-positions")

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> DispatchCoordinator:
        from common.settings import Settings, build_store

        settings = settings or Settings.from_env()
        engine = GeoDistanceEngine(settings.distance_policy())
        return cls(
            store=kwargs.pop("store", None) or build_store(settings),
            engine=engine,
            matcher=ProximityMatcher(engine=engine, policy=settings.matching_policy()),
            calculator=FareCalculator(settings.fare_tariff()),
            **kwargs,
        )

    # --- Dispatch actions ---

    def request_ride(
        self,
        rider_id: str,
        pickup: Any,
        drop: Any,
        pickup_address: str = "",
        drop_address: str = "",
        payment_method: str | PaymentMethod = PaymentMethod.CASH,
    ) -> RideRequest:
        """
        Distance and fare are computed here, once, and frozen on the request.
        Raises GeoInputError for bad coordinates and ActiveRideExists if the
        rider already has a ride in progress.
        """
        pickup = _as_position(pickup)
        drop = _as_position(drop)

        active = self.store.query(RIDES, {"riderId": rider_id, "status": ACTIVE_STATUSES})
        if active:
            raise ActiveRideExists(f"Rider {rider_id} already has an active ride ({active[0]['id']})")

        distance_km = round(self.engine.distance(pickup, drop, use_cache=True), 2)
        fare = self.calculator.estimate(distance_km)

        ride = RideRequest.new(
            rider_id=rider_id,
            pickup=pickup,
            drop=drop,
            distance_km=distance_km,
            estimated_minutes=self.calculator.estimate_minutes(distance_km),
            fare=fare.amount,
            pickup_address=pickup_address,
            drop_address=drop_address,
            payment_method=payment_method,
            created_at=self.lifecycle.clock(),
        )
        self.lifecycle.create(ride)
        logger.info("Ride %s requested by %s: %.2f km, fare %s", ride.id, rider_id, distance_km, fare.amount)
        return ride

    def accept_ride(self, ride_id: str, driver_id: str) -> RideResult:
        try:
            ride = self.lifecycle.accept(ride_id, driver_id)
        except AlreadyAssigned as error:
            return RideResult(success=False, message=str(error), error_code="already_assigned")

        return RideResult(success=True, ride=ride, message="Ride accepted")

    def start_ride(self, ride_id: str, driver_id: str) -> RideRequest:
        return self.lifecycle.start(ride_id, driver_id)

    def complete_ride(self, ride_id: str, driver_id: str) -> CommissionSplit:
        _, split = self.lifecycle.complete(ride_id, driver_id)
        return split

    def cancel_ride(self, ride_id: str, actor_id: str, reason: str = "") -> RideRequest:
        return self.lifecycle.cancel(ride_id, actor_id, reason)

    def rate_driver(self, ride_id: str, rider_id: str, stars: int) -> float:
        return self.lifecycle.rate_driver(ride_id, rider_id, stars)

    def record_payment(self, ride_id: str, driver_id: str, method: str | PaymentMethod) -> RideRequest:
        return self.lifecycle.record_payment(ride_id, driver_id, method)

    # --- Driver availability and positions ---

    def go_online(
        self,
        driver_id: str,
        location: Any,
        vehicle_type: str | VehicleType = VehicleType.BIKE,
        rating: Optional[float] = None,
    ) -> DriverAvailability:
        fields: Dict[str, Any] = {
            "location": _as_position(location).to_record(),
            "isOnline": True,
            "vehicleType": VehicleType.parse(vehicle_type).value,
        }
        if rating is not None:
            fields["rating"] = float(rating)

        self.store.upsert(DRIVERS, driver_id, fields)
        logger.info("Driver %s is online", driver_id)
        return DriverAvailability.from_record(self.store.get(DRIVERS, driver_id))

    def go_offline(self, driver_id: str) -> None:
        self.store.upsert(DRIVERS, driver_id, {"isOnline": False})
        logger.info("Driver %s is offline", driver_id)

    def publish_driver_position(self, driver_id: str, update: LocationUpdate) -> DriverPositionEvent:
        """
        Every update reaches in-process listeners; only measured movement is
        written to the store.
        """
        event = DriverPositionEvent(driver_id, update.position, update.position.timestamp)
        self.driver_positions.publish(event)

        if update.moved and not update.is_predicted:
            self.store.upsert(DRIVERS, driver_id, {"location": update.position.to_record()})

        return event

    def attach_tracker(self, driver_id: str, tracker: LocationTracker, session_id: Optional[str] = None) -> Subscription:
        handle = tracker.add_listener(lambda update: self.publish_driver_position(driver_id, update))
        return self._register(session_id or f"driver:{driver_id}", handle)

    # --- Watches ---

    def watch_pending_requests(
        self,
        driver_id: str,
        on_update: Callable[[List[RideRequest]], None],
        on_error: Optional[ErrorCallback] = None,
        session_id: Optional[str] = None,
    ) -> Subscription:
        """
        Pending requests, newest first. Only for drivers currently online.
        """
        driver = self.store.get(DRIVERS, driver_id)
        if driver is None or not driver.get("isOnline"):
            raise DriverUnavailable(f"Driver {driver_id} must be online to see requests")

        def emit(view: SnapshotView) -> None:
            rides = [RideRequest.from_record(record) for record in view.documents()]
            rides.sort(key=lambda ride: ride.created_at, reverse=True)
            on_update(rides)

        return self._watch(RIDES, {"status": RideStatus.PENDING}, emit, on_error, session_id or f"driver:{driver_id}")

    def watch_active_ride(
        self,
        rider_id: str,
        on_update: Callable[[Optional[RideRequest]], None],
        on_error: Optional[ErrorCallback] = None,
        session_id: Optional[str] = None,
    ) -> Subscription:
        """
        The rider's pending / accepted / in-progress ride, or None once it ends.
        """
        def emit(view: SnapshotView) -> None:
            rides = [RideRequest.from_record(record) for record in view.documents()]
            rides.sort(key=lambda ride: ride.created_at, reverse=True)
            on_update(rides[0] if rides else None)

        filters = {"riderId": rider_id, "status": ACTIVE_STATUSES}
        return self._watch(RIDES, filters, emit, on_error, session_id or f"rider:{rider_id}")

    def watch_nearby_drivers(
        self,
        pickup: Any,
        on_update: Callable[[List[DriverCandidate]], None],
        radius_km: Optional[float] = None,
        vehicle_type: Optional[VehicleType] = None,
        on_error: Optional[ErrorCallback] = None,
        session_id: Optional[str] = None,
    ) -> Subscription:
        """
        Online drivers around pickup, closest first. Re-ranked on every store
        change and on every in-process driver position event.
        """
        pickup = _as_position(pickup)
        session_id = session_id or f"nearby:{uuid.uuid4()}"
        latest: Dict[str, Position] = {}
        lock = RLock()
        view_ref: List[SnapshotView] = []

        def rank(view: SnapshotView) -> None:
            with lock:
                drivers = [
                    driver.with_location(latest[driver.driver_id]) if driver.driver_id in latest else driver
                    for driver in _parse_drivers(view.documents())
                ]
            on_update(self.matcher.rank_candidates(pickup, drivers, radius_km, vehicle_type))

        def on_position(event: DriverPositionEvent) -> None:
            if not view_ref:
                return
            view = view_ref[0]
            with lock:
                known = any(record.get("id") == event.driver_id for record in view.documents())
                if not known:
                    return
                latest[event.driver_id] = event.location
            rank(view)

        def on_store_change(view: SnapshotView) -> None:
            # a store write is newer than any relayed position for that driver
            with lock:
                for record in view.documents():
                    position = latest.get(record.get("id"))
                    if position is not None and record.get("location"):
                        stored = Position.from_record(record["location"])
                        if stored.timestamp >= position.timestamp:
                            latest.pop(record["id"], None)
            rank(view)

        handle = self._watch(DRIVERS, {"isOnline": True}, on_store_change, on_error, session_id, view_ref)
        positions = self._register(session_id, self.driver_positions.subscribe(on_position))

        def dispose() -> None:
            handle.unsubscribe()
            positions.unsubscribe()

        return Subscription(dispose)

    def _watch(
        self,
        collection: str,
        filters: Filters,
        emit: Callable[[SnapshotView], None],
        on_error: Optional[ErrorCallback],
        session_id: str,
        view_ref: Optional[List[SnapshotView]] = None,
    ) -> Subscription:
        view = SnapshotView()
        if view_ref is not None:
            view_ref.append(view)

        loading = [True]

        def on_change(event: ChangeEvent) -> None:
            view.apply(event)
            if not loading[0]:
                emit(view)

        def on_reset() -> None:
            loading[0] = True
            view.reset()

        def on_resubscribed() -> None:
            loading[0] = False
            emit(view)

        subscription = ResilientSubscription(
            self.store,
            collection,
            filters,
            on_change,
            ticker=self.ticker,
            on_error=on_error,
            on_reset=on_reset,
            on_resubscribed=on_resubscribed,
        ).start()

        # stores that replay matches synchronously get one emission for the whole batch
        on_resubscribed()

        return self._register(session_id, subscription)

    def _register(self, session_id: str, handle: Any) -> Subscription:
        self.sessions.add(session_id, handle)

        def dispose() -> None:
            self.sessions.discard(session_id, handle)
            handle.unsubscribe()

        return Subscription(dispose)

    # --- Teardown ---

    def close_session(self, session_id: str) -> int:
        return self.sessions.close_session(session_id)

    def close(self) -> None:
        closed = self.sessions.close_all()
        self.driver_positions.clear()
        logger.debug("Dispatch coordinator closed %d subscriptions", closed)
