"""
Purpose: In-process publish/subscribe primitive.
What it does:
Replaces hand-managed listener arrays with a channel whose subscribe() call
returns a handle. Disposing the handle (explicitly or as a context manager)
always removes the listener, so a finished ride session cannot leak callbacks.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Callable, Generic, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """
    Handle returned by every subscribe-style call in the codebase.
    Calling unsubscribe() more than once is harmless.
    """

    def __init__(self, on_dispose: Optional[Callable[[], None]] = None):
        self._on_dispose = on_dispose
        self._active = True
        self._lock = RLock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            on_dispose, self._on_dispose = self._on_dispose, None

        if on_dispose is not None:
            on_dispose()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class EventChannel(Generic[T]):
    """
    A named fan-out channel. Listener failures are logged and isolated so one
    broken consumer never starves the others.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        # (token, listener): each subscribe() owns its own entry, even for a repeated callable
        self._listeners: List[Tuple[object, Callable[[T], None]]] = []
        self._lock = RLock()

    def subscribe(self, listener: Callable[[T], None]) -> Subscription:
        if not callable(listener):
            raise TypeError("listener must be callable")

        token = object()
        with self._lock:
            self._listeners.append((token, listener))

        return Subscription(lambda: self._remove(token))

    def _remove(self, token: object) -> None:
        with self._lock:
            self._listeners = [entry for entry in self._listeners if entry[0] is not token]

    def publish(self, event: T) -> None:
        # iterate over a snapshot so listeners may unsubscribe while being called
        with self._lock:
            listeners = [listener for _, listener in self._listeners]

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener on channel %r failed", self.name)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
