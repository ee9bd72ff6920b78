"""
Purpose: Process-local implementation of the document store contract.
What it does:
Keeps collections as dicts of documents behind a lock, so compare_and_set and
increment are atomic across threads. Used by tests, scripts and any
deployment without STORE_URL.

Change events are computed under the data lock and delivered under a
separate delivery lock, so every subscriber sees changes in commit order and
callbacks may write back into the store.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from common.events import Subscription

from .base import (
    ChangeCallback,
    ChangeEvent,
    ChangeKind,
    Document,
    DocumentStore,
    ErrorCallback,
    Filters,
    StoreUnavailable,
    matches,
    normalize_filters,
)

logger = logging.getLogger(__name__)


@dataclass
class _Watcher:
    collection: str
    filters: Dict[str, Any]
    on_change: ChangeCallback
    on_error: Optional[ErrorCallback]
    matched: Set[str] = field(default_factory=set)
    active: bool = True


class InMemoryDocumentStore(DocumentStore):

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._watchers: List[_Watcher] = []
        self._lock = RLock()
        self._delivery_lock = RLock()

    # --- Reads ---

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def query(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        filters = normalize_filters(filters)
        with self._lock:
            return [
                copy.deepcopy(document)
                for document in self._collections.get(collection, {}).values()
                if matches(document, filters)
            ]

    # --- Writes ---

    def upsert(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        with self._delivery_lock:
            with self._lock:
                documents = self._collections.setdefault(collection, {})
                document = dict(documents.get(doc_id) or {})
                document.update(copy.deepcopy(dict(fields)))
                document["id"] = doc_id
                documents[doc_id] = document
                pending = self._changes(collection, doc_id, document)
            self._deliver(pending)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._delivery_lock:
            with self._lock:
                removed = self._collections.get(collection, {}).pop(doc_id, None)
                if removed is None:
                    return
                pending = self._changes(collection, doc_id, None)
            self._deliver(pending)

    def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        updates: Mapping[str, Any],
    ) -> bool:
        expected = normalize_filters(expected)
        with self._delivery_lock:
            with self._lock:
                current = self._collections.get(collection, {}).get(doc_id)
                if current is None:
                    return False
                for key, value in expected.items():
                    if current.get(key) != value:
                        return False

                document = dict(current)
                document.update(copy.deepcopy(dict(updates)))
                document["id"] = doc_id
                self._collections[collection][doc_id] = document
                pending = self._changes(collection, doc_id, document)
            self._deliver(pending)
            return True

    def increment(self, collection: str, doc_id: str, deltas: Mapping[str, float]) -> Document:
        with self._delivery_lock:
            with self._lock:
                documents = self._collections.setdefault(collection, {})
                document = dict(documents.get(doc_id) or {"id": doc_id})
                for key, delta in deltas.items():
                    document[key] = (document.get(key) or 0) + delta
                documents[doc_id] = document
                pending = self._changes(collection, doc_id, document)
                result = copy.deepcopy(document)
            self._deliver(pending)
            return result

    # --- Subscriptions ---

    def subscribe(
        self,
        collection: str,
        filters: Optional[Filters],
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        watcher = _Watcher(collection, normalize_filters(filters), on_change, on_error)

        with self._delivery_lock:
            with self._lock:
                initial = []
                for doc_id, document in self._collections.get(collection, {}).items():
                    if matches(document, watcher.filters):
                        watcher.matched.add(doc_id)
                        initial.append(ChangeEvent(ChangeKind.ADDED, doc_id, copy.deepcopy(document)))
                self._watchers.append(watcher)
            self._deliver([(watcher, event) for event in initial])

        return Subscription(lambda: self._remove_watcher(watcher))

    def _remove_watcher(self, watcher: _Watcher) -> None:
        with self._lock:
            watcher.active = False
            if watcher in self._watchers:
                self._watchers.remove(watcher)

    def subscriber_count(self, collection: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for w in self._watchers if collection is None or w.collection == collection)

    def disconnect(self, collection: Optional[str] = None, reason: str = "connection lost") -> int:
        """
        Drops live subscriptions as a lost connection would: each one receives
        StoreUnavailable on its error callback and gets no further events.
        Returns how many were dropped.
        """
        with self._delivery_lock:
            with self._lock:
                dropped = [w for w in self._watchers if collection is None or w.collection == collection]
                for watcher in dropped:
                    watcher.active = False
                    self._watchers.remove(watcher)

            for watcher in dropped:
                if watcher.on_error is not None:
                    try:
                        watcher.on_error(StoreUnavailable(reason))
                    except Exception:
                        logger.exception("Subscription error callback failed")
            return len(dropped)

    # --- Internals ---

    def _changes(self, collection: str, doc_id: str, document: Optional[Document]) -> List[Tuple[_Watcher, ChangeEvent]]:
        pending = []
        for watcher in self._watchers:
            if watcher.collection != collection:
                continue

            was_match = doc_id in watcher.matched
            is_match = matches(document, watcher.filters)

            if is_match:
                watcher.matched.add(doc_id)
                kind = ChangeKind.MODIFIED if was_match else ChangeKind.ADDED
                pending.append((watcher, ChangeEvent(kind, doc_id, copy.deepcopy(document))))
            elif was_match:
                watcher.matched.discard(doc_id)
                pending.append((watcher, ChangeEvent(ChangeKind.REMOVED, doc_id, None)))

        return pending

    def _deliver(self, pending: List[Tuple[_Watcher, ChangeEvent]]) -> None:
        for watcher, event in pending:
            if not watcher.active:
                continue
            try:
                watcher.on_change(event)
            except Exception:
                logger.exception("Subscriber on %r failed handling %s", watcher.collection, event.kind.value)
