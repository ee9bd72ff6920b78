from datetime import timedelta

import pytest

from conftest import T0, FakeClock, ManualTicker, ScriptedSource
from geo.distance import haversine_m
from geo.models import PositionSource
from tracking.models import TrackingTier
from tracking.policy import TrackingPolicy
from tracking.source import GeolocationError, GeolocationErrorCode, LocationTimeout, LocationUnavailable, RawFix
from tracking.tracker import LocationTracker

# ~111 m per 0.001 degree of latitude
LAT, LON = 12.9716, 77.5946


def collect(tracker):
    updates, errors, tiers = [], [], []
    tracker.add_listener(updates.append)
    tracker.add_error_listener(errors.append)
    tracker.tier_changes.subscribe(tiers.append)
    return updates, errors, tiers


def test_scenario_c_three_timeouts_degrade_high_balanced_low(tracker, source):
    updates, errors, tiers = collect(tracker)
    tracker.start()
    assert tracker.tier == TrackingTier.HIGH

    source.emit_error(GeolocationErrorCode.TIMEOUT)
    source.emit_error(GeolocationErrorCode.TIMEOUT)
    source.emit_error(GeolocationErrorCode.TIMEOUT)

    # 1. Assert the tier only ever stepped down
    assert tiers == [TrackingTier.BALANCED, TrackingTier.LOW]
    assert tracker.tier == TrackingTier.LOW
    assert tracker.is_tracking

    # 2. Assert the source was re-watched with each tier's options
    assert [o.enable_high_accuracy for o in source.watch_options] == [True, True, False]
    assert [o.timeout_s for o in source.watch_options] == [10, 15, 20]

    # 3. Assert only the timeout with no tier left surfaced as an error
    assert len(errors) == 1
    assert isinstance(errors[0], LocationTimeout)


def test_successful_fix_does_not_climb_back_up(tracker, source, clock):
    _, _, tiers = collect(tracker)
    tracker.start()
    source.emit_error(GeolocationErrorCode.TIMEOUT)
    source.emit_fix(LAT, LON, clock())

    assert tracker.tier == TrackingTier.BALANCED
    assert tiers == [TrackingTier.BALANCED]


def test_scenario_d_jitter_is_forwarded_but_not_movement(tracker, source, clock):
    updates, _, _ = collect(tracker)
    tracker.start()

    source.emit_fix(LAT, LON, clock())
    clock.advance(2)
    source.emit_fix(LAT + 0.000036, LON, clock())  # about 4 m north

    # 1. Assert both fixes reached listeners
    assert len(updates) == 2
    assert updates[0].moved is True
    assert updates[1].moved is False

    # 2. Assert the jitter carries a refreshed timestamp
    assert updates[1].position.timestamp == clock()

    # 3. Assert the history only holds the first fix
    assert len(tracker.history) == 1
    assert tracker.last_position == updates[0].position


def test_real_movement_enters_bounded_history(tracker, source, clock):
    tracker.start()
    for i in range(12):
        source.emit_fix(LAT + i * 0.001, LON, clock())
        clock.advance(5)

    history = tracker.history
    assert len(history) == 10
    assert history[-1].latitude == pytest.approx(LAT + 11 * 0.001)
    assert history[0].latitude == pytest.approx(LAT + 2 * 0.001)


def test_jitter_is_measured_from_last_reported_fix(tracker, source, clock):
    updates, _, _ = collect(tracker)
    tracker.start()

    # three 6 m steps: each is jitter relative to the first fix until the total passes 10 m
    source.emit_fix(LAT, LON, clock())
    for step in (1, 2, 3):
        clock.advance(1)
        source.emit_fix(LAT + step * 0.000054, LON, clock())

    assert [u.moved for u in updates] == [True, False, True, False]
    assert len(tracker.history) == 2


def test_listeners_see_non_decreasing_timestamps(tracker, source, clock):
    updates, _, _ = collect(tracker)
    tracker.start()

    source.emit_fix(LAT, LON, T0 + timedelta(seconds=10))
    source.emit_fix(LAT + 0.001, LON, T0 + timedelta(seconds=5))  # stale, dropped
    source.emit_fix(LAT + 0.002, LON, T0 + timedelta(seconds=15))

    stamps = [u.position.timestamp for u in updates]
    assert stamps == sorted(stamps)
    assert len(updates) == 2


def test_movement_older_than_a_refreshed_jitter_stamp_is_kept(tracker, source, clock):
    updates, _, _ = collect(tracker)
    tracker.start()

    source.emit_fix(LAT, LON, T0)
    clock.advance(10)
    source.emit_fix(LAT + 0.000009, LON, T0 + timedelta(seconds=2))  # 1 m, delivered at the local clock
    source.emit_fix(LAT + 0.001, LON, T0 + timedelta(seconds=5))  # 111 m, cached GPS time

    # 1. Assert the movement reached history with its measured time
    assert len(tracker.history) == 2
    assert tracker.history[-1].timestamp == T0 + timedelta(seconds=5)

    # 2. Assert listeners still see non-decreasing timestamps
    assert [u.moved for u in updates] == [True, False, True]
    assert updates[-1].position.timestamp == T0 + timedelta(seconds=10)
    assert updates[-1].position.latitude == pytest.approx(LAT + 0.001)


def test_dead_reckoning_after_errors(tracker, source, clock, ticker):
    updates, errors, _ = collect(tracker)
    tracker.start()

    # heading north at 10 m/s
    source.emit_fix(LAT, LON, clock(), accuracy=8.0)
    clock.advance(10)
    source.emit_fix(LAT + 0.0008993, LON, clock(), accuracy=8.0)

    clock.advance(5)
    source.emit_error(GeolocationErrorCode.UNAVAILABLE)

    predicted = updates[-1]

    # 1. Assert the error still reached listeners and tracking continues
    assert isinstance(errors[-1], GeolocationError)
    assert tracker.is_tracking
    assert tracker.tier == TrackingTier.HIGH

    # 2. Assert the prediction is flagged, less confident and not movement
    assert predicted.is_predicted
    assert predicted.position.source == PositionSource.PREDICTED
    assert predicted.moved is False
    assert predicted.position.accuracy == pytest.approx(12.0)

    # 3. Assert it extrapolated about 5 s * 10 m/s past the last fix
    last = tracker.history[-1]
    ahead = haversine_m(last.latitude, last.longitude, predicted.position.latitude, predicted.position.longitude)
    assert ahead == pytest.approx(50, rel=0.02)
    assert predicted.position.latitude > last.latitude

    # 4. Assert predictions never enter history
    assert len(tracker.history) == 2
    assert all(p.source == PositionSource.MEASURED for p in tracker.history)


def test_prediction_ticker_runs_until_next_fix(tracker, source, clock, ticker):
    updates, _, _ = collect(tracker)
    tracker.start()

    source.emit_fix(LAT, LON, clock())
    clock.advance(2)
    source.emit_fix(LAT + 0.0002, LON, clock())
    source.emit_error(GeolocationErrorCode.UNAVAILABLE)
    assert ticker.active_count() == 1

    before = len(updates)
    clock.advance(1)
    ticker.advance(1)
    clock.advance(1)
    ticker.advance(1)
    assert len(updates) == before + 2
    assert all(u.is_predicted for u in updates[before:])

    # a real fix cancels the prediction timer
    clock.advance(1)
    source.emit_fix(LAT + 0.0010, LON, clock())
    assert ticker.active_count() == 0
    assert updates[-1].is_predicted is False


def test_no_prediction_from_stale_history(tracker, source, clock):
    updates, _, _ = collect(tracker)
    tracker.start()

    source.emit_fix(LAT, LON, clock())
    clock.advance(31)
    source.emit_fix(LAT + 0.001, LON, clock())
    source.emit_error(GeolocationErrorCode.UNAVAILABLE)

    assert not any(u.is_predicted for u in updates)


def test_no_prediction_when_disabled(tracker, source, clock, ticker):
    updates, _, _ = collect(tracker)
    tracker.set_prediction_enabled(False)
    tracker.start()

    source.emit_fix(LAT, LON, clock())
    clock.advance(2)
    source.emit_fix(LAT + 0.0002, LON, clock())
    source.emit_error(GeolocationErrorCode.UNAVAILABLE)

    assert not any(u.is_predicted for u in updates)
    assert ticker.active_count() == 0


def test_permission_denied_is_terminal(tracker, source, clock):
    updates, errors, _ = collect(tracker)
    tracker.start()

    source.emit_error(GeolocationErrorCode.PERMISSION_DENIED)

    # 1. Assert tracking stopped and the watch was cleared
    assert not tracker.is_tracking
    assert source.cleared == [1]
    assert not source.watching

    # 2. Assert listeners got the terminal error type
    assert len(errors) == 1
    assert isinstance(errors[0], LocationUnavailable)
    assert updates == []


def test_stop_halts_source_and_discards_prediction_timer(tracker, source, clock, ticker):
    updates, _, _ = collect(tracker)
    tracker.start()
    source.emit_fix(LAT, LON, clock())
    clock.advance(2)
    source.emit_fix(LAT + 0.0002, LON, clock())
    source.emit_error(GeolocationErrorCode.UNAVAILABLE)
    assert ticker.active_count() == 1

    tracker.stop()

    assert ticker.active_count() == 0
    assert not source.watching

    count = len(updates)
    ticker.advance(10)
    assert len(updates) == count


def test_watch_refused_at_start_raises_location_unavailable(clock, ticker):
    class RefusingSource(ScriptedSource):
        def watch_position(self, on_fix, on_error, options):
            raise GeolocationError(GeolocationErrorCode.UNAVAILABLE, "no GPS hardware")

    tracker = LocationTracker(RefusingSource(), ticker=ticker, clock=clock)
    with pytest.raises(LocationUnavailable):
        tracker.start()
    assert not tracker.is_tracking


def test_invalid_fix_is_reported_not_delivered(tracker, source, clock):
    updates, errors, _ = collect(tracker)
    tracker.start()
    source.emit_fix(float("nan"), LON, clock())

    assert updates == []
    assert isinstance(errors[0], ValueError)


def test_current_position_falls_back_to_low_accuracy(tracker, source):
    source.current_results = [
        GeolocationError(GeolocationErrorCode.TIMEOUT),
        RawFix(LAT, LON, 50.0, T0),
    ]

    position = tracker.current_position()

    assert position.coordinates == (LAT, LON)
    assert [o.enable_high_accuracy for o in source.current_options] == [True, False]


def test_current_position_permission_denied(tracker, source):
    source.current_results = [GeolocationError(GeolocationErrorCode.PERMISSION_DENIED)]

    with pytest.raises(LocationUnavailable):
        tracker.current_position()


def test_status_and_threshold_knobs(tracker, source, clock):
    tracker.start()
    source.emit_fix(LAT, LON, clock())

    status = tracker.status()
    assert status.is_tracking
    assert status.tier == TrackingTier.HIGH
    assert status.history_length == 1
    assert status.prediction_enabled

    with pytest.raises(ValueError):
        tracker.set_min_movement_threshold(0)

    # with a 2 m threshold a 4 m step is real movement
    tracker.set_min_movement_threshold(2)
    clock.advance(1)
    source.emit_fix(LAT + 0.000036, LON, clock())
    assert tracker.status().history_length == 2


def test_tier_options_use_milliseconds():
    options = TrackingPolicy().options_for(TrackingTier.BALANCED)
    assert options.to_dict() == {"enableHighAccuracy": True, "maximumAge": 15000, "timeout": 15000}


def test_restart_clears_previous_watch():
    source, ticker, clock = ScriptedSource(), ManualTicker(), FakeClock()
    tracker = LocationTracker(source, ticker=ticker, clock=clock)

    tracker.start()
    tracker.start(TrackingTier.LOW)

    assert source.cleared == [1]
    assert tracker.tier == TrackingTier.LOW
