"""
Purpose: Per-device position acquisition with graceful degradation.
What it does:
- Watches a GeolocationSource at the current accuracy tier
  (not-tracking -> tracking(tier) -> not-tracking)
- Steps the tier down (high -> balanced -> low) on timeouts, never back up
- Forwards jitter (fixes under the movement threshold) with a refreshed
  timestamp but keeps it out of the movement history
- Falls back to dead-reckoning predictions while fixes keep failing
- Treats permission denial as terminal: tracking stops

Listeners receive LocationUpdate objects in non-decreasing timestamp order.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Deque, Optional, Tuple

from common.events import EventChannel, Subscription
from geo.distance import GeoInputError, haversine_m, validate_coordinates
from geo.models import Position, PositionSource

from .models import LocationUpdate, TrackerStatus, TrackingTier
from .policy import TrackingPolicy, default_tracking_policy
from .prediction import predict_position
from .source import (
    GeolocationError,
    GeolocationErrorCode,
    GeolocationSource,
    LocationTimeout,
    LocationUnavailable,
    RawFix,
)
from .ticker import ThreadingTicker, Ticker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocationTracker:

    def __init__(
        self,
        source: GeolocationSource,
        policy: Optional[TrackingPolicy] = None,
        ticker: Optional[Ticker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.policy = policy or default_tracking_policy()
        self.policy.validate()
        self.ticker = ticker or ThreadingTicker()
        self.clock = clock or _utcnow

        self.updates: EventChannel[LocationUpdate] = EventChannel("location-updates")
        self.errors: EventChannel[Exception] = EventChannel("location-errors")
        self.tier_changes: EventChannel[TrackingTier] = EventChannel("tier-changes")

        self._lock = RLock()
        self._tracking = False
        self._tier = self.policy.degrade_order[0]
        self._watch_id: Any = None

        self._last_position: Optional[Position] = None
        self._last_delivered_at: Optional[datetime] = None
        self._last_measured_at: Optional[datetime] = None
        self._history: Deque[Position] = deque(maxlen=self.policy.history_size)

        self._prediction_enabled = self.policy.prediction_enabled
        self._min_movement_m = self.policy.min_movement_m
        self._consecutive_errors = 0
        self._prediction_timer: Optional[Subscription] = None

    # --- Listener registration ---

    def add_listener(self, callback: Callable[[LocationUpdate], None]) -> Subscription:
        return self.updates.subscribe(callback)

    def add_error_listener(self, callback: Callable[[Exception], None]) -> Subscription:
        return self.errors.subscribe(callback)

    # --- Lifecycle ---

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def tier(self) -> TrackingTier:
        return self._tier

    @property
    def history(self) -> Tuple[Position, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def last_position(self) -> Optional[Position]:
        return self._last_position

    def start(self, tier: TrackingTier = TrackingTier.HIGH) -> None:
        """
        Starts (or restarts) watching at the given tier.
        Raises LocationUnavailable if the source cannot watch at all.
        """
        with self._lock:
            if self._tracking:
                self._stop_locked()

            self._tracking = True
            self._consecutive_errors = 0
            self._set_tier(tier)
            self._watch()

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._watch_id is not None:
            watch_id, self._watch_id = self._watch_id, None
            self.source.clear_watch(watch_id)

        self._cancel_prediction_timer()
        self._tracking = False

    def _set_tier(self, tier: TrackingTier) -> None:
        changed = tier != self._tier
        self._tier = tier
        if changed:
            self.tier_changes.publish(tier)

    def _watch(self) -> None:
        options = self.policy.options_for(self._tier)
        try:
            self._watch_id = self.source.watch_position(self._handle_fix, self._handle_error, options)
        except GeolocationError as error:
            self._stop_locked()
            raise LocationUnavailable(f"Cannot watch position: {error}") from error

    def _degrade(self, tier: TrackingTier) -> None:
        if self._watch_id is not None:
            watch_id, self._watch_id = self._watch_id, None
            self.source.clear_watch(watch_id)

        self._set_tier(tier)
        try:
            self._watch()
        except LocationUnavailable as error:
            logger.error("Location source refused to restart in %s tier: %s", tier.value, error)
            self.errors.publish(error)

    # --- Source callbacks ---

    def _handle_fix(self, raw: RawFix) -> None:
        with self._lock:
            if not self._tracking:
                return

            try:
                validate_coordinates(raw.latitude, raw.longitude)
            except GeoInputError as error:
                logger.warning("Discarding invalid fix: %s", error)
                self.errors.publish(error)
                return

            position = Position(
                latitude=float(raw.latitude),
                longitude=float(raw.longitude),
                accuracy=float(raw.accuracy),
                timestamp=raw.timestamp,
                heading=raw.heading,
                speed=raw.speed,
                source=PositionSource.MEASURED,
            )

            # staleness is judged against measured timestamps only
            if self._last_measured_at is not None and position.timestamp < self._last_measured_at:
                logger.debug("Dropping out-of-order fix from %s", position.timestamp.isoformat())
                return

            self._last_measured_at = position.timestamp
            self._consecutive_errors = 0
            self._cancel_prediction_timer()

            if self._last_position is not None:
                moved_m = haversine_m(
                    self._last_position.latitude, self._last_position.longitude,
                    position.latitude, position.longitude,
                )
                if moved_m < self._min_movement_m:
                    # keep listeners alive without counting the jitter as movement
                    refreshed = position.with_timestamp(self._monotonic(self.clock()))
                    self._deliver(LocationUpdate(refreshed, moved=False))
                    return

            self._last_position = position
            self._history.append(position)
            delivered = position.with_timestamp(self._monotonic(position.timestamp))
            self._deliver(LocationUpdate(delivered, moved=True))

    def _handle_error(self, error: Exception) -> None:
        with self._lock:
            if not self._tracking:
                return

            code = getattr(error, "code", None)

            if code == GeolocationErrorCode.PERMISSION_DENIED:
                logger.error("Location permission denied; tracking stopped")
                self._stop_locked()
                self.errors.publish(LocationUnavailable(str(error)))
                return

            if code == GeolocationErrorCode.TIMEOUT:
                next_tier = self.policy.next_tier(self._tier)
                if next_tier is not None:
                    logger.warning("Location timeout in %s tier, switching to %s", self._tier.value, next_tier.value)
                    self._degrade(next_tier)
                    return
                surfaced: Exception = LocationTimeout(f"Location timeout in {self._tier.value} tier; no tier left")
            else:
                surfaced = error

            self._consecutive_errors += 1
            if self._prediction_enabled and self._consecutive_errors >= self.policy.prediction_after_errors:
                self._emit_prediction()
                self._ensure_prediction_timer()

            self.errors.publish(surfaced)

    # --- Prediction ---

    def _emit_prediction(self) -> None:
        predicted = predict_position(list(self._history), self.clock(), self.policy)
        if predicted is None:
            return

        predicted = replace(predicted, timestamp=self._monotonic(predicted.timestamp))
        logger.debug("Emitting predicted position %s", predicted.coordinates)
        self._deliver(LocationUpdate(predicted, moved=False))

    def _ensure_prediction_timer(self) -> None:
        if self._prediction_timer is None:
            self._prediction_timer = self.ticker.every(self.policy.prediction_interval_s, self._on_prediction_tick)

    def _on_prediction_tick(self) -> None:
        with self._lock:
            if self._tracking and self._prediction_enabled:
                self._emit_prediction()

    def _cancel_prediction_timer(self) -> None:
        if self._prediction_timer is not None:
            timer, self._prediction_timer = self._prediction_timer, None
            timer.unsubscribe()

    # --- Delivery ---

    def _monotonic(self, timestamp: datetime) -> datetime:
        if self._last_delivered_at is not None and timestamp < self._last_delivered_at:
            return self._last_delivered_at
        return timestamp

    def _deliver(self, update: LocationUpdate) -> None:
        self._last_delivered_at = update.position.timestamp
        self.updates.publish(update)

    # --- One-shot and knobs ---

    def current_position(self) -> Position:
        """
        One fix, trying the first tier and falling back to the last one.
        Raises LocationUnavailable or LocationTimeout.
        """
        first = self.policy.options_for(self.policy.degrade_order[0])
        fallback = self.policy.options_for(self.policy.degrade_order[-1])

        try:
            raw = self.source.get_current_position(first)
        except GeolocationError as error:
            if error.code == GeolocationErrorCode.PERMISSION_DENIED:
                raise LocationUnavailable(str(error)) from error

            logger.warning("High accuracy position failed (%s), trying lower accuracy", error.code.value)
            try:
                raw = self.source.get_current_position(fallback)
            except GeolocationError as fallback_error:
                if fallback_error.code == GeolocationErrorCode.TIMEOUT:
                    raise LocationTimeout(str(fallback_error)) from fallback_error
                raise LocationUnavailable(str(fallback_error)) from fallback_error

        latitude, longitude = validate_coordinates(raw.latitude, raw.longitude)
        return Position(
            latitude=latitude,
            longitude=longitude,
            accuracy=float(raw.accuracy),
            timestamp=raw.timestamp,
            heading=raw.heading,
            speed=raw.speed,
        )

    def set_prediction_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._prediction_enabled = bool(enabled)
            if not enabled:
                self._cancel_prediction_timer()

    def set_min_movement_threshold(self, meters: float) -> None:
        if isinstance(meters, bool) or not isinstance(meters, (int, float)) or meters <= 0:
            raise ValueError("movement threshold must be a positive number of meters")
        with self._lock:
            self._min_movement_m = float(meters)

    def status(self) -> TrackerStatus:
        with self._lock:
            return TrackerStatus(
                is_tracking=self._tracking,
                tier=self._tier,
                last_position=self._last_position,
                prediction_enabled=self._prediction_enabled,
                history_length=len(self._history),
            )
