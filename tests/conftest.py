from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

import pytest

from common.events import Subscription
from dispatch.dispatcher import DispatchCoordinator
from pricing.fare import FareCalculator
from pricing.policy import FareTariff
from store.memory import InMemoryDocumentStore
from tracking.models import TierOptions
from tracking.source import GeolocationError, GeolocationErrorCode, GeolocationSource, RawFix
from tracking.ticker import Ticker
from tracking.tracker import LocationTracker

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class _ManualTimer:
    def __init__(self, due: float, interval: Optional[float], callback: Callable[[], None]):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.active = True

    def cancel(self):
        self.active = False


class ManualTicker(Ticker):
    """Fires timers only when a test calls advance()."""

    def __init__(self):
        self.now = 0.0
        self.timers: List[_ManualTimer] = []

    def every(self, interval_s, callback):
        timer = _ManualTimer(self.now + interval_s, interval_s, callback)
        self.timers.append(timer)
        return Subscription(timer.cancel)

    def after(self, delay_s, callback):
        timer = _ManualTimer(self.now + delay_s, None, callback)
        self.timers.append(timer)
        return Subscription(timer.cancel)

    def active_count(self) -> int:
        return sum(1 for timer in self.timers if timer.active)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if t.active and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            if timer.interval is None:
                timer.active = False
            else:
                timer.due += timer.interval
            timer.callback()
        self.now = target


class ScriptedSource(GeolocationSource):
    """Geolocation source driven by the test: emit fixes and errors by hand."""

    def __init__(self):
        self.watch_options: List[TierOptions] = []
        self.cleared: List[Any] = []
        self.current_results: List[Any] = []
        self.current_options: List[TierOptions] = []
        self._on_fix = None
        self._on_error = None
        self._next_id = 0

    @property
    def watching(self) -> bool:
        return self._on_fix is not None

    def get_current_position(self, options):
        self.current_options.append(options)
        result = self.current_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def watch_position(self, on_fix, on_error, options):
        self._next_id += 1
        self.watch_options.append(options)
        self._on_fix = on_fix
        self._on_error = on_error
        return self._next_id

    def clear_watch(self, watch_id):
        self.cleared.append(watch_id)
        self._on_fix = None
        self._on_error = None

    def emit_fix(self, lat, lon, timestamp, accuracy=5.0, heading=None, speed=None):
        assert self._on_fix is not None, "no active watch"
        self._on_fix(RawFix(lat, lon, accuracy, timestamp, heading, speed))

    def emit_error(self, code: GeolocationErrorCode):
        assert self._on_error is not None, "no active watch"
        self._on_error(GeolocationError(code))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ticker():
    return ManualTicker()


@pytest.fixture
def source():
    return ScriptedSource()


@pytest.fixture
def tracker(source, ticker, clock):
    return LocationTracker(source, ticker=ticker, clock=clock)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def calculator():
    # 40 base + 50/km: a 1.20 km trip costs exactly 100.00
    return FareCalculator(FareTariff(base_fare=40, per_km_rate=50))


@pytest.fixture
def coordinator(store, calculator, clock, ticker):
    coordinator = DispatchCoordinator(store, calculator=calculator, clock=clock, ticker=ticker)
    yield coordinator
    coordinator.close()
