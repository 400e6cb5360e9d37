"""Hosted document store adapters.

Every adapter exposes the same four operations: fetch the whole tree, write a
full document at ``collection/key``, remove a document, and subscribe to a
collection. Adapters never retry; failures surface as ``RemoteUnavailable``.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import quote, urlencode

from ..errors import MalformedRemoteDocument, RemoteUnavailable
from ..keys import FORBIDDEN_KEY_CHARS_RE
from ..store.types import REMOTE_COLLECTIONS, RemoteTree
from . import http_client

logger = logging.getLogger(__name__)

SubscriptionCallback = Callable[[dict[str, Any]], None]
Disposer = Callable[[], None]


class RemoteStore(Protocol):
    def fetch_all(self) -> RemoteTree: ...

    def put_entity(self, collection: str, key: str, value: dict[str, Any]) -> None: ...

    def remove_entity(self, collection: str, key: str) -> None: ...

    def subscribe(self, collection: str, callback: SubscriptionCallback) -> Disposer: ...

    def close(self) -> None: ...


def normalize_collection(value: object) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        # Integer-like keys come back as a sparse array.
        return {str(i): v for i, v in enumerate(value) if v is not None}
    raise MalformedRemoteDocument(f"expected an object, got {type(value).__name__}")


def normalize_tree(data: object) -> RemoteTree:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedRemoteDocument(f"remote root is {type(data).__name__}, not an object")
    tree: dict[str, dict[str, Any]] = {}
    for collection in REMOTE_COLLECTIONS:
        try:
            tree[collection] = normalize_collection(data.get(collection))
        except MalformedRemoteDocument as exc:
            logger.warning("treating malformed remote %s as empty", collection, exc_info=exc)
            tree[collection] = {}
    return RemoteTree(
        projects=tree["projects"],
        feedback=tree["feedback"],
        tasks=tree["tasks"],
        notes=tree["notes"],
    )


def _check_key(collection: str, key: str) -> None:
    if collection not in REMOTE_COLLECTIONS:
        raise ValueError(f"unknown collection: {collection!r}")
    if not key or FORBIDDEN_KEY_CHARS_RE.search(key) or "/" in key:
        raise ValueError(f"invalid remote key: {key!r}")


class MemoryRemote:
    """In-process store with the hosted store's semantics.

    Subscriptions fire synchronously: once on registration and again after
    every write to the collection.
    """

    def __init__(self, tree: dict[str, Any] | None = None) -> None:
        self._lock = threading.RLock()
        normalized = normalize_tree(copy.deepcopy(tree) if tree else None)
        self._tree: dict[str, dict[str, Any]] = {c: dict(v) for c, v in normalized.items()}
        self._subscribers: dict[str, list[SubscriptionCallback]] = {}

    def fetch_all(self) -> RemoteTree:
        with self._lock:
            return normalize_tree(copy.deepcopy(self._tree))

    def fetch_collection(self, collection: str) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._tree.get(collection, {}))

    def put_entity(self, collection: str, key: str, value: dict[str, Any]) -> None:
        _check_key(collection, key)
        with self._lock:
            self._tree[collection][key] = copy.deepcopy(value)
        self._notify(collection)

    def remove_entity(self, collection: str, key: str) -> None:
        _check_key(collection, key)
        with self._lock:
            removed = self._tree[collection].pop(key, None)
        if removed is not None:
            self._notify(collection)

    def subscribe(self, collection: str, callback: SubscriptionCallback) -> Disposer:
        if collection not in REMOTE_COLLECTIONS:
            raise ValueError(f"unknown collection: {collection!r}")
        with self._lock:
            self._subscribers.setdefault(collection, []).append(callback)
        callback(self.fetch_collection(collection))

        def dispose() -> None:
            with self._lock:
                callbacks = self._subscribers.get(collection, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return dispose

    def _notify(self, collection: str) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(collection, []))
        for callback in callbacks:
            callback(self.fetch_collection(collection))

    def close(self) -> None:
        with self._lock:
            self._subscribers.clear()


class _CollectionPoller:
    """Delivers a collection's value to a callback whenever it changes."""

    def __init__(
        self,
        fetch: Callable[[], dict[str, Any]],
        callback: SubscriptionCallback,
        *,
        interval_s: float,
        name: str,
    ) -> None:
        self._fetch = fetch
        self._callback = callback
        self._interval_s = max(0.05, interval_s)
        self._stop = threading.Event()
        self._last: dict[str, Any] | None = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def tick(self) -> None:
        try:
            value = self._fetch()
        except (RemoteUnavailable, MalformedRemoteDocument) as exc:
            logger.warning("subscription poll failed", exc_info=exc)
            return
        if self._last is not None and value == self._last:
            return
        self._last = value
        try:
            self._callback(copy.deepcopy(value))
        except Exception as exc:
            logger.exception("subscription callback failed", exc_info=exc)

    def _run(self) -> None:
        self.tick()
        while not self._stop.wait(self._interval_s):
            self.tick()


class FirebaseRemote:
    """Firebase Realtime Database over its REST interface.

    ``GET {base}/.json`` returns the tree, ``PUT``/``DELETE`` on
    ``{base}/{collection}/{key}.json`` overwrite or remove a document.
    Subscriptions poll the collection every ``poll_interval_s``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: str | None = None,
        timeout_s: float = 10.0,
        poll_interval_s: float = 30.0,
    ) -> None:
        self.base_url = http_client.build_base_url(base_url)
        if not self.base_url:
            raise ValueError("firebase url is required")
        self.auth = auth
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self._lock = threading.Lock()
        self._pollers: list[_CollectionPoller] = []

    def _url(self, *segments: str) -> str:
        path = "/".join(quote(segment, safe="") for segment in segments)
        url = f"{self.base_url}/{path}.json"
        if self.auth:
            url = f"{url}?{urlencode({'auth': self.auth})}"
        return url

    def _request(self, method: str, url: str, body: Any = None) -> Any:
        try:
            status, payload = http_client.request_json(
                method, url, body=body, timeout_s=self.timeout_s
            )
        except (OSError, ValueError) as exc:
            raise RemoteUnavailable(f"{method} failed: {exc}", detail=str(exc)) from exc
        http_client.raise_for_reply(method, status, payload)
        return payload

    def fetch_all(self) -> RemoteTree:
        payload = self._request("GET", self._url(""))
        return normalize_tree(payload)

    def fetch_collection(self, collection: str) -> dict[str, Any]:
        payload = self._request("GET", self._url(collection))
        return normalize_collection(payload)

    def put_entity(self, collection: str, key: str, value: dict[str, Any]) -> None:
        _check_key(collection, key)
        self._request("PUT", self._url(collection, key), body=value)

    def remove_entity(self, collection: str, key: str) -> None:
        _check_key(collection, key)
        self._request("DELETE", self._url(collection, key))

    def subscribe(self, collection: str, callback: SubscriptionCallback) -> Disposer:
        if collection not in REMOTE_COLLECTIONS:
            raise ValueError(f"unknown collection: {collection!r}")
        poller = _CollectionPoller(
            lambda: self.fetch_collection(collection),
            callback,
            interval_s=self.poll_interval_s,
            name=f"projectreview-subscribe-{collection}",
        )
        with self._lock:
            self._pollers.append(poller)
        poller.start()

        def dispose() -> None:
            poller.stop()
            with self._lock:
                if poller in self._pollers:
                    self._pollers.remove(poller)

        return dispose

    def close(self) -> None:
        with self._lock:
            pollers = list(self._pollers)
            self._pollers.clear()
        for poller in pollers:
            poller.stop()
