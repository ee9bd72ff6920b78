#Purpose: The Firebase Realtime Database "adapter/client".
#Sole responsibility: talk to the database over its REST API and return
#plain documents shaped the way the rest of the system expects.
#Encapsulates Firebase-specific details:
#URL construction (/{collection}/{id}.json?auth=...)
#ETag / if-match conditional writes for compare_and_set
#{".sv": {"increment": n}} server values for atomic counters
#the text/event-stream protocol (put / patch / keep-alive / cancel / auth_revoked)
#It should not contain ride rules or matching.

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote

import requests
from dotenv import load_dotenv

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

# Example in .env:
# STORE_URL=https://my-project-default-rtdb.firebaseio.com
# STORE_AUTH_TOKEN=<database secret or ID token>
load_dotenv()
STORE_URL = os.getenv("STORE_URL")
STORE_AUTH_TOKEN = os.getenv("STORE_AUTH_TOKEN")

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _with_id(data: Any, doc_id: str) -> Optional[Document]:
    if not isinstance(data, dict):
        return None
    document = dict(data)
    document["id"] = doc_id
    return document


def _set_path(tree: Dict[str, Any], segments: List[str], value: Any) -> None:
    """
    Writes value at segments inside tree; None deletes, as it does in the database.
    """
    node = tree
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            if value is None:
                return
            child = {}
            node[segment] = child
        node = child

    if value is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = copy.deepcopy(value)


class FirebaseRestStore(DocumentStore):
    """
    Firebase Realtime Database adapter

    Sole responsibility:
    - Map the store contract onto REST calls
    - Translate transport failures into StoreUnavailable
    - Run one event-stream thread per subscription
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        max_cas_retries: int = 5,
    ):
        self.base_url = (base_url or STORE_URL or "").rstrip("/")
        self.auth_token = auth_token or STORE_AUTH_TOKEN
        self.timeout = timeout  # seconds to wait for a response before giving up
        self.session = session or requests.Session()
        self.max_cas_retries = max_cas_retries

        if not self.base_url:
            raise ValueError("Store URL not set. Please set STORE_URL in the .env file.")

    #----------------
    # Internal helpers: URLs, auth, error handling
    #----------------

    def _url(self, collection: str, doc_id: Optional[str] = None) -> str:
        path = quote(collection, safe="")
        if doc_id is not None:
            path = f"{path}/{quote(str(doc_id), safe='')}"
        return f"{self.base_url}/{path}.json"

    def _params(self, **extra: str) -> Dict[str, str]:
        params = dict(extra)
        if self.auth_token:
            params["auth"] = self.auth_token
        return params

    def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        try:
            return self.session.request(
                method,
                url,
                params=params if params is not None else self._params(),
                json=_jsonable(body) if body is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as error:
            raise StoreUnavailable(f"{method} {url} failed: {error}") from error

    @staticmethod
    def _check(response: requests.Response, action: str) -> requests.Response:
        if response.status_code >= 400:
            raise StoreUnavailable(f"{action} failed with HTTP {response.status_code}: {response.text}")
        return response

    #----------------
    # Reads
    #----------------

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        response = self._check(self._send("GET", self._url(collection, doc_id)), f"get {collection}/{doc_id}")
        return _with_id(response.json(), doc_id)

    def query(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        """
        The first single-value filter runs server-side (orderBy/equalTo, which
        needs an index on that field); the rest are applied here.
        """
        filters = normalize_filters(filters)
        params = self._params()

        for field, value in filters.items():
            if not isinstance(value, tuple):
                params["orderBy"] = json.dumps(field)
                params["equalTo"] = json.dumps(value)
                break

        response = self._check(self._send("GET", self._url(collection), params=params), f"query {collection}")
        data = response.json() or {}

        documents = []
        for doc_id, raw in data.items():
            document = _with_id(raw, doc_id)
            if matches(document, filters):
                documents.append(document)
        return documents

    #----------------
    # Writes
    #----------------

    def upsert(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        body = dict(fields)
        body["id"] = doc_id
        self._check(self._send("PATCH", self._url(collection, doc_id), body=body), f"upsert {collection}/{doc_id}")

    def delete(self, collection: str, doc_id: str) -> None:
        self._check(self._send("DELETE", self._url(collection, doc_id)), f"delete {collection}/{doc_id}")

    def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        updates: Mapping[str, Any],
    ) -> bool:
        """
        Read with an ETag, check, then write with if-match. A 412 means someone
        else wrote in between: re-read and re-check, a bounded number of times.
        """
        expected = normalize_filters(expected)
        url = self._url(collection, doc_id)

        for attempt in range(1, self.max_cas_retries + 1):
            read = self._check(
                self._send("GET", url, headers={"X-Firebase-ETag": "true"}),
                f"read {collection}/{doc_id}",
            )
            current = _with_id(read.json(), doc_id)
            if current is None:
                return False

            for key, value in expected.items():
                if current.get(key) != value:
                    return False

            document = dict(current)
            document.update(updates)
            document["id"] = doc_id

            write = self._send("PUT", url, body=document, headers={"if-match": read.headers.get("ETag", "")})
            if write.status_code == 412:
                logger.info("Conditional write on %s/%s conflicted (attempt %d)", collection, doc_id, attempt)
                continue

            self._check(write, f"conditional write {collection}/{doc_id}")
            return True

        raise StoreUnavailable(
            f"compare_and_set on {collection}/{doc_id} conflicted {self.max_cas_retries} times"
        )

    def increment(self, collection: str, doc_id: str, deltas: Mapping[str, float]) -> Document:
        body: Dict[str, Any] = {key: {".sv": {"increment": delta}} for key, delta in deltas.items()}
        body["id"] = doc_id
        self._check(self._send("PATCH", self._url(collection, doc_id), body=body), f"increment {collection}/{doc_id}")
        return self.get(collection, doc_id) or {"id": doc_id}

    #----------------
    # Streaming subscriptions
    #----------------

    def subscribe(
        self,
        collection: str,
        filters: Optional[Filters],
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        stream = _EventStream(self, collection, normalize_filters(filters), on_change, on_error)
        stream.start()
        return Subscription(stream.close)


class _EventStream(threading.Thread):
    """
    One streaming GET against a collection. Applies put/patch events to a
    local copy of the collection and turns the difference in matching
    documents into ChangeEvents.
    """

    def __init__(
        self,
        store: FirebaseRestStore,
        collection: str,
        filters: Dict[str, Any],
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback],
    ):
        super().__init__(name=f"firebase-stream-{collection}", daemon=True)
        self.store = store
        self.collection = collection
        self.filters = filters
        self.on_change = on_change
        self.on_error = on_error

        self._snapshot: Dict[str, Any] = {}
        self._matched: Dict[str, Document] = {}
        self._closed = threading.Event()
        self._response: Optional[requests.Response] = None

    def close(self) -> None:
        self._closed.set()
        response, self._response = self._response, None
        if response is not None:
            response.close()

    def run(self) -> None:
        try:
            response = self.store.session.request(
                "GET",
                self.store._url(self.collection),
                params=self.store._params(),
                headers={"Accept": "text/event-stream"},
                stream=True,
                timeout=(self.store.timeout, None),
            )
            self._response = response
            FirebaseRestStore._check(response, f"stream {self.collection}")
            self.consume(response.iter_lines(decode_unicode=True))
            if not self._closed.is_set():
                self._fail(StoreUnavailable(f"stream on {self.collection} ended"))
        except StoreUnavailable as error:
            self._fail(error)
        except requests.RequestException as error:
            self._fail(StoreUnavailable(f"stream on {self.collection} failed: {error}"))
        except UnicodeDecodeError as error:
            self._fail(StoreUnavailable(f"stream on {self.collection} sent undecodable data: {error}"))

    def consume(self, lines: Iterable[str]) -> None:
        event_name: Optional[str] = None
        data_lines: List[str] = []

        for line in lines:
            if self._closed.is_set():
                return

            if isinstance(line, bytes):
                line = line.decode("utf-8")

            if not line:
                if event_name is not None:
                    self._dispatch(event_name, "\n".join(data_lines))
                event_name, data_lines = None, []
                continue

            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())

        if event_name is not None and not self._closed.is_set():
            self._dispatch(event_name, "\n".join(data_lines))

    def _dispatch(self, event_name: str, raw_data: str) -> None:
        if event_name == "keep-alive":
            return

        if event_name in ("cancel", "auth_revoked"):
            self._fail(StoreUnavailable(f"stream on {self.collection} closed by server: {event_name}"))
            self._closed.set()
            return

        if event_name not in ("put", "patch"):
            logger.debug("Ignoring stream event %r", event_name)
            return

        try:
            payload = json.loads(raw_data) if raw_data else {}
            segments = [s for s in (payload.get("path") or "/").split("/") if s]
            touched = self._apply(event_name, segments, payload.get("data"))
        except (ValueError, TypeError, AttributeError) as error:
            # the local snapshot can no longer be trusted; resubscribing rebuilds it
            self._fail(StoreUnavailable(f"unreadable {event_name} event on {self.collection}: {error}"))
            self._closed.set()
            return

        self._emit(touched)

    def _apply(self, event_name: str, segments: List[str], data: Any) -> Tuple[str, ...]:
        if event_name == "put":
            if not segments:
                touched = set(self._snapshot) | set(data or {})
                self._snapshot = copy.deepcopy(data) if isinstance(data, dict) else {}
                return tuple(touched)
            _set_path(self._snapshot, segments, data)
            return (segments[0],)

        # patch: each key of data is a child path under segments
        touched = set()
        for key, value in (data or {}).items():
            child = segments + [s for s in key.split("/") if s]
            _set_path(self._snapshot, child, value)
            touched.add(child[0])
        return tuple(touched)

    def _emit(self, doc_ids: Iterable[str]) -> None:
        for doc_id in sorted(doc_ids):
            document = _with_id(self._snapshot.get(doc_id), doc_id)
            was_match = doc_id in self._matched
            is_match = matches(document, self.filters)

            if is_match:
                if was_match and self._matched[doc_id] == document:
                    continue
                self._matched[doc_id] = document
                kind = ChangeKind.MODIFIED if was_match else ChangeKind.ADDED
                self._deliver(ChangeEvent(kind, doc_id, copy.deepcopy(document)))
            elif was_match:
                del self._matched[doc_id]
                self._deliver(ChangeEvent(ChangeKind.REMOVED, doc_id, None))

    def _deliver(self, event: ChangeEvent) -> None:
        if self._closed.is_set():
            return
        try:
            self.on_change(event)
        except Exception:
            logger.exception("Subscriber on %r failed handling %s", self.collection, event.kind.value)

    def _fail(self, error: StoreUnavailable) -> None:
        if self._closed.is_set():
            return
        logger.warning("Subscription on %r dropped: %s", self.collection, error)
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception:
                logger.exception("Subscription error callback failed")
