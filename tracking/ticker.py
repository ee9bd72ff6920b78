"""
Purpose: Timer abstraction for work that must happen without a fresh input
(dead-reckoning ticks, delayed resubscription). Independent of any UI or
rendering loop so the logic using it is testable with a manual ticker.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from common.events import Subscription

logger = logging.getLogger(__name__)


class Ticker(ABC):

    @abstractmethod
    def every(self, interval_s: float, callback: Callable[[], None]) -> Subscription:
        """Calls callback every interval_s seconds until the handle is disposed."""

    @abstractmethod
    def after(self, delay_s: float, callback: Callable[[], None]) -> Subscription:
        """Calls callback once after delay_s seconds unless the handle is disposed first."""


class _RepeatingTimer:

    def __init__(self, interval_s: float, callback: Callable[[], None]):
        self.interval_s = interval_s
        self.callback = callback
        self._stopped = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._stopped.is_set():
                return
            self._timer = threading.Timer(self.interval_s, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        if self._stopped.is_set():
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Ticker callback failed")
        self.start()

    def cancel(self) -> None:
        self._stopped.set()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()


class ThreadingTicker(Ticker):
    """Default ticker backed by daemon threading.Timer objects."""

    def every(self, interval_s: float, callback: Callable[[], None]) -> Subscription:
        timer = _RepeatingTimer(interval_s, callback)
        timer.start()
        return Subscription(timer.cancel)

    def after(self, delay_s: float, callback: Callable[[], None]) -> Subscription:
        timer = threading.Timer(delay_s, callback)
        timer.daemon = True
        timer.start()
        return Subscription(timer.cancel)
