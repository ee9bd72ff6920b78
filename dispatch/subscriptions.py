"""
Purpose: Subscription plumbing for the dispatch coordinator.
What it does:
- SnapshotView: the current set of documents matching one store query,
  maintained from ChangeEvents
- ResilientSubscription: resubscribes after StoreUnavailable with
  exponential backoff, and gives up (reporting the error) once the backoff
  is exhausted
- SessionRegistry: live subscriptions keyed by session id, owned by a
  coordinator instead of a process-wide map
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from common.events import Subscription
from store.base import ChangeEvent, ChangeKind, Document, DocumentStore, ErrorCallback, Filters
from store.retry import Backoff
from tracking.ticker import Ticker

logger = logging.getLogger(__name__)


class SnapshotView:

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self._lock = RLock()

    def apply(self, event: ChangeEvent) -> None:
        with self._lock:
            if event.kind == ChangeKind.REMOVED:
                self._documents.pop(event.doc_id, None)
            else:
                self._documents[event.doc_id] = event.data or {"id": event.doc_id}

    def reset(self) -> None:
        with self._lock:
            self._documents.clear()

    def documents(self) -> List[Document]:
        with self._lock:
            return list(self._documents.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


class ResilientSubscription:
    """
    Wraps store.subscribe. When the store drops the subscription, waits
    backoff.next_delay() on the ticker and subscribes again. on_reset runs
    before each resubscribe because the store replays current matches as
    ADDED; on_resubscribed runs once subscribe() has returned. A delivered
    change resets the backoff.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        filters: Optional[Filters],
        on_change: Callable[[ChangeEvent], None],
        ticker: Ticker,
        on_error: Optional[ErrorCallback] = None,
        on_reset: Optional[Callable[[], None]] = None,
        on_resubscribed: Optional[Callable[[], None]] = None,
        backoff: Optional[Backoff] = None,
    ):
        self.store = store
        self.collection = collection
        self.filters = filters
        self.on_change = on_change
        self.on_error = on_error
        self.on_reset = on_reset
        self.on_resubscribed = on_resubscribed
        self.ticker = ticker
        self.backoff = backoff or Backoff()

        self._lock = RLock()
        self._closed = False
        self._inner: Optional[Subscription] = None
        self._retry: Optional[Subscription] = None
        self.reconnects = 0

    def start(self) -> ResilientSubscription:
        self._subscribe()
        return self

    # self._lock is never held across a store call

    def _subscribe(self) -> None:
        handle = self.store.subscribe(self.collection, self.filters, self._handle_change, self._handle_error)
        with self._lock:
            if not self._closed:
                self._inner = handle
                return
        handle.unsubscribe()

    def _handle_change(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        self.backoff.reset()
        self.on_change(event)

    def _handle_error(self, error: Exception) -> None:
        with self._lock:
            if self._closed:
                return

            inner, self._inner = self._inner, None
            delay = self.backoff.next_delay()
            if delay is None:
                self._closed = True
            else:
                self._retry = self.ticker.after(delay, self._resubscribe)

        if inner is not None:
            inner.unsubscribe()

        if delay is None:
            logger.error("Giving up on %r subscription after %d attempts: %s", self.collection, self.backoff.attempts, error)
            if self.on_error is not None:
                self.on_error(error)
        else:
            logger.warning("Subscription on %r dropped (%s); retrying in %.0fs", self.collection, error, delay)

    def _resubscribe(self) -> None:
        with self._lock:
            self._retry = None
            if self._closed:
                return
            self.reconnects += 1

        if self.on_reset is not None:
            self.on_reset()
        self._subscribe()
        if self.on_resubscribed is not None and not self._closed:
            self.on_resubscribed()

    @property
    def active(self) -> bool:
        return not self._closed

    def unsubscribe(self) -> None:
        with self._lock:
            self._closed = True
            retry, self._retry = self._retry, None
            inner, self._inner = self._inner, None

        if retry is not None:
            retry.unsubscribe()
        if inner is not None:
            inner.unsubscribe()


class SessionRegistry:
    """
    Live subscriptions grouped by session id (one rider screen, one driver
    shift). Closing a session disposes everything registered under it.
    """

    def __init__(self):
        self._sessions: Dict[str, List[Any]] = {}
        self._lock = RLock()

    def add(self, session_id: str, handle: Any) -> None:
        """handle is anything with unsubscribe()."""
        with self._lock:
            self._sessions.setdefault(session_id, []).append(handle)

    def discard(self, session_id: str, handle: Any) -> None:
        with self._lock:
            handles = self._sessions.get(session_id)
            if handles and handle in handles:
                handles.remove(handle)
                if not handles:
                    del self._sessions[session_id]

    def close_session(self, session_id: str) -> int:
        with self._lock:
            handles = self._sessions.pop(session_id, [])

        for handle in handles:
            handle.unsubscribe()
        return len(handles)

    def close_all(self) -> int:
        with self._lock:
            session_ids = list(self._sessions)
        return sum(self.close_session(session_id) for session_id in session_ids)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def handle_count(self, session_id: Optional[str] = None) -> int:
        with self._lock:
            if session_id is not None:
                return len(self._sessions.get(session_id, []))
            return sum(len(handles) for handles in self._sessions.values())

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
