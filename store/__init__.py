#Marks store as a package.
#The document store contract plus the in-memory and Firebase REST adapters.
#Adapters are imported from their modules directly so requests is only
#needed when the Firebase adapter is used.

from .base import ChangeEvent, ChangeKind, DocumentStore, StoreUnavailable, matches
from .memory import InMemoryDocumentStore
from .retry import Backoff

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "DocumentStore",
    "StoreUnavailable",
    "matches",
    "InMemoryDocumentStore",
    "Backoff",
]
