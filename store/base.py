"""
Purpose: The real-time document store contract.
What it does:
Defines what the dispatch core needs from its backing store: upsert by id,
equality queries, push subscriptions, an atomic compare-and-set and atomic
numeric increments. Documents are plain dicts carrying their id under "id".

Filters are {field: value}; a tuple/list/set value means "field in values".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from common.events import Subscription

Document = Dict[str, Any]
Filters = Mapping[str, Any]


class StoreUnavailable(Exception):
    """Transport failure talking to the store (write failed or subscription dropped)."""
    pass


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    doc_id: str
    data: Optional[Document]


ChangeCallback = Callable[[ChangeEvent], None]
ErrorCallback = Callable[[Exception], None]


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def matches(document: Optional[Mapping[str, Any]], filters: Optional[Filters]) -> bool:
    if document is None:
        return False

    for field, expected in (filters or {}).items():
        actual = document.get(field)
        if isinstance(expected, (tuple, list, set, frozenset)):
            if actual not in {_plain(v) for v in expected}:
                return False
        elif actual != _plain(expected):
            return False

    return True


def normalize_filters(filters: Optional[Filters]) -> Dict[str, Any]:
    """
    Enum members become their values so filters compare against stored JSON.
    """
    normalized: Dict[str, Any] = {}
    for field, expected in (filters or {}).items():
        if isinstance(expected, (tuple, list, set, frozenset)):
            normalized[field] = tuple(_plain(v) for v in expected)
        else:
            normalized[field] = _plain(expected)
    return normalized


class DocumentStore(ABC):

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Returns a copy of the document or None."""

    @abstractmethod
    def upsert(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Merges fields into the document, creating it if missing."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        pass

    @abstractmethod
    def query(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        pass

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        filters: Optional[Filters],
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Delivers the current matches as ADDED, then ADDED / MODIFIED / REMOVED
        as documents enter, change within or leave the query. A dropped
        subscription reports StoreUnavailable to on_error and stops.
        """

    @abstractmethod
    def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        updates: Mapping[str, Any],
    ) -> bool:
        """
        Atomically applies updates only if every expected field currently has
        the expected value (a missing field compares as None).
        Returns False when the document is missing or any field differs.
        """

    @abstractmethod
    def increment(self, collection: str, doc_id: str, deltas: Mapping[str, float]) -> Document:
        """
        Atomically adds deltas to numeric fields (missing fields start at 0)
        and returns the updated document.
        """
