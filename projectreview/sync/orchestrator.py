"""Sync orchestration between the entity store and a remote store.

Pushes run one at a time on a single background worker and follow the
read-merge-write protocol: fetch the remote tree, merge, adopt the merged
result locally, then overwrite the remote documents that differ. Pulls never
wait for a push; a pull that finds a push in flight is skipped and the next
trigger tries again.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, cast

from ..errors import MalformedRemoteDocument, RemoteUnavailable, SubmissionError
from ..keys import sanitize_key
from ..store import EntityStore
from ..store.types import (
    COLLECTION_FEEDBACK,
    COLLECTION_FOR_KIND,
    COLLECTION_NOTES,
    COLLECTION_PROJECTS,
    COLLECTION_TASKS,
    ENTITY_KINDS,
    KIND_FEEDBACK,
    KIND_PROJECT,
    LAST_MODIFIED_FIELD,
    REMOTE_COLLECTIONS,
    RemoteTree,
)
from ..utils import now_iso
from .merge import changed_entities, merge, remote_entities, remote_path_key
from .remote import Disposer, RemoteStore, normalize_collection

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]

_KIND_FOR_COLLECTION = {collection: kind for kind, collection in COLLECTION_FOR_KIND.items()}


def _documents(tree: RemoteTree, collection: str) -> dict[str, Any]:
    return cast(dict[str, Any], tree).get(collection) or {}


class SyncOrchestrator:
    def __init__(
        self,
        store: EntityStore,
        remote: RemoteStore,
        *,
        min_pull_interval_s: float = 5.0,
        push_retries: int = 3,
        push_backoff_s: float = 0.5,
        push_backoff_max_s: float = 8.0,
        background: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.remote = remote
        self.min_pull_interval_s = max(0.0, min_pull_interval_s)
        self.push_retries = max(0, push_retries)
        self.push_backoff_s = max(0.0, push_backoff_s)
        self.push_backoff_max_s = max(self.push_backoff_s, push_backoff_max_s)
        self._sleep = sleep
        self._clock = clock
        # Held for the whole fetch-merge-write sequence of a push.
        self._sync_in_progress = threading.Lock()
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="projectreview-push")
            if background
            else None
        )
        self._listeners: list[Listener] = []
        self._listeners_lock = threading.Lock()
        self._subscriptions: list[Disposer] = []
        self._primed: set[str] = set()
        # Tasks/notes documents edited locally and not yet written, by count.
        self._staged: dict[tuple[str, str], int] = {}
        self.data_loaded = False
        self.last_pull_at: float | None = None

    # --- change notification --------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def notify(self, reason: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(reason)
            except Exception as exc:
                logger.exception("change listener failed", exc_info=exc)

    # --- pulls ------------------------------------------------------------

    def cold_load(self) -> bool:
        """Replace local state with the remote tree.

        Falls back to the durable mirror when the remote cannot be read.
        Returns whether the remote was used.
        """

        try:
            tree = self.remote.fetch_all()
        except (RemoteUnavailable, MalformedRemoteDocument) as exc:
            logger.warning("remote unavailable on load; using local mirror", exc_info=exc)
            with self.store.lock:
                self.store.load()
                self.store.migrate_entities()
                self.store.sync_image_cache()
            self.data_loaded = True
            self.notify("load")
            return False
        with self.store.lock:
            for kind in ENTITY_KINDS:
                entities = remote_entities(
                    _documents(tree, COLLECTION_FOR_KIND[kind]),
                    kind,
                    name_for=self.store.keys.natural_key,
                )
                self.store.replace(kind, entities)
            self.store.tasks = self._remote_tasks(tree[COLLECTION_TASKS])
            self.store.notes = self._remote_notes(tree[COLLECTION_NOTES])
            self.store.migrate_entities()
            self.store.sync_image_cache()
            self.store.persist()
        self.last_pull_at = self._clock()
        self.data_loaded = True
        logger.info(
            "loaded %d projects and %d feedback from remote",
            len(tree[COLLECTION_PROJECTS]),
            len(tree[COLLECTION_FEEDBACK]),
        )
        self.notify("load")
        return True

    def pull(self, *, force: bool = False) -> bool:
        """Fetch the remote tree and merge it into the store.

        Skipped (returns False) when the last pull is fresher than
        ``min_pull_interval_s`` unless ``force``, when a push is in flight, or
        when the remote cannot be read.
        """

        if (
            not force
            and self.last_pull_at is not None
            and self._clock() - self.last_pull_at < self.min_pull_interval_s
        ):
            logger.debug("pull skipped; last pull is fresh")
            return False
        if not self._sync_in_progress.acquire(blocking=False):
            logger.debug("pull skipped; push in flight")
            return False
        try:
            try:
                tree = self.remote.fetch_all()
            except (RemoteUnavailable, MalformedRemoteDocument) as exc:
                logger.warning("pull failed; keeping local state", exc_info=exc)
                return False
            self._apply_tree(tree)
            self.last_pull_at = self._clock()
        finally:
            self._sync_in_progress.release()
        self.notify("pull")
        return True

    def force_pull(self) -> bool:
        return self.pull(force=True)

    def on_visible(self) -> bool:
        return self.pull()

    def _apply_tree(self, tree: RemoteTree) -> None:
        with self.store.lock:
            for kind in ENTITY_KINDS:
                self._merge_collection(kind, _documents(tree, COLLECTION_FOR_KIND[kind]))
            self._adopt_children(COLLECTION_TASKS, self._remote_tasks(tree[COLLECTION_TASKS]))
            self._adopt_children(COLLECTION_NOTES, self._remote_notes(tree[COLLECTION_NOTES]))
            self.store.sync_image_cache()
            self.store.persist()

    def _merge_collection(self, kind: str, collection: dict[str, Any]) -> None:
        remote = remote_entities(collection, kind, name_for=self.store.keys.natural_key)
        self.store.replace(kind, merge(self.store.all(kind), remote))

    def _adopt_children(self, collection: str, incoming: Mapping[str, Any]) -> None:
        current = self.store.tasks if collection == COLLECTION_TASKS else self.store.notes
        for name, value in incoming.items():
            if (collection, name) in self._staged:
                logger.debug("keeping staged %s for %r", collection, name)
                continue
            current[name] = value

    def _remote_tasks(self, collection: dict[str, Any]) -> dict[str, Any]:
        tasks: dict[str, Any] = {}
        for key, doc in collection.items():
            items = doc.get("tasks") if isinstance(doc, dict) else None
            if not isinstance(items, list):
                continue
            tasks[self.store.keys.natural_key(key)] = [t for t in items if isinstance(t, dict)]
        return tasks

    def _remote_notes(self, collection: dict[str, Any]) -> dict[str, str]:
        notes: dict[str, str] = {}
        for key, doc in collection.items():
            content = doc.get("content") if isinstance(doc, dict) else None
            if isinstance(content, str):
                notes[self.store.keys.natural_key(key)] = content
        return notes

    # --- pushes -----------------------------------------------------------

    def push(self, *, surface_errors: bool = False) -> bool:
        """Read-merge-write every entity collection to the remote store."""

        return self._run_with_retries("push", self._push_once, surface_errors=surface_errors)

    def _push_once(self) -> None:
        tree = self.remote.fetch_all()
        writes: list[tuple[str, list[dict[str, Any]]]] = []
        with self.store.lock:
            for kind in ENTITY_KINDS:
                collection = COLLECTION_FOR_KIND[kind]
                remote = remote_entities(
                    _documents(tree, collection),
                    kind,
                    name_for=self.store.keys.natural_key,
                )
                merged = merge(self.store.all(kind), remote)
                self.store.replace(kind, merged)
                writes.append((collection, changed_entities(merged, remote)))
            self.store.persist()
        count = 0
        for collection, entities in writes:
            for entity in entities:
                self.remote.put_entity(collection, remote_path_key(entity), entity)
                count += 1
        logger.debug("push wrote %d documents", count)
        self.notify("push")

    def stage_child(self, collection: str, name: str) -> dict[str, Any]:
        """Snapshot the tasks or notes document of ``name`` for a later write.

        Until ``write_child`` finishes with it, pulls keep the local copy of
        that document instead of adopting the remote one.
        """

        with self.store.lock:
            if collection == COLLECTION_TASKS:
                doc: dict[str, Any] = {"tasks": self.store.project_tasks(name)}
            elif collection == COLLECTION_NOTES:
                doc = {"content": self.store.notes.get(name, "")}
            else:
                raise ValueError(f"not a child collection: {collection!r}")
            doc[LAST_MODIFIED_FIELD] = now_iso()
            key = (collection, name)
            self._staged[key] = self._staged.get(key, 0) + 1
        return doc

    def write_child(
        self, collection: str, name: str, doc: dict[str, Any], *, surface_errors: bool = False
    ) -> bool:
        try:
            return self._run_with_retries(
                f"{collection} write",
                lambda: self.remote.put_entity(collection, sanitize_key(name), doc),
                surface_errors=surface_errors,
            )
        finally:
            with self.store.lock:
                key = (collection, name)
                remaining = self._staged.get(key, 0) - 1
                if remaining > 0:
                    self._staged[key] = remaining
                else:
                    self._staged.pop(key, None)

    def remove_children(self, name: str, *, surface_errors: bool = False) -> bool:
        key = sanitize_key(name)

        def remove() -> None:
            self.remote.remove_entity(COLLECTION_TASKS, key)
            self.remote.remove_entity(COLLECTION_NOTES, key)

        return self._run_with_retries("child removal", remove, surface_errors=surface_errors)

    def _run_with_retries(
        self, label: str, operation: Callable[[], None], *, surface_errors: bool
    ) -> bool:
        last_error: Exception | None = None
        with self._sync_in_progress:
            for attempt in range(self.push_retries + 1):
                try:
                    operation()
                    return True
                except MalformedRemoteDocument as exc:
                    last_error = exc
                    break
                except RemoteUnavailable as exc:
                    last_error = exc
                    if attempt >= self.push_retries:
                        break
                    delay = min(self.push_backoff_s * (2**attempt), self.push_backoff_max_s)
                    logger.info(
                        "%s failed (attempt %d/%d); retrying in %.2fs",
                        label,
                        attempt + 1,
                        self.push_retries + 1,
                        delay,
                    )
                    self._sleep(delay)
        if surface_errors:
            raise SubmissionError(f"{label} failed: {last_error}") from last_error
        logger.warning("%s abandoned", label, exc_info=last_error)
        return False

    def schedule(self, fn: Callable[..., bool], *args: Any, **kwargs: Any) -> Future[bool]:
        """Queue ``fn`` behind earlier pushes; runs inline without a worker."""

        future: Future[bool]
        if self._executor is not None:
            future = self._executor.submit(fn, *args, **kwargs)
        else:
            future = Future()
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)
        if not kwargs.get("surface_errors"):
            future.add_done_callback(_log_unexpected_failure)
        return future

    def schedule_push(self, *, surface_errors: bool = False) -> Future[bool]:
        return self.schedule(self.push, surface_errors=surface_errors)

    def wait_idle(self, timeout: float | None = None) -> None:
        """Block until every queued push has finished."""

        if self._executor is None:
            return
        self._executor.submit(lambda: None).result(timeout=timeout)

    # --- realtime ---------------------------------------------------------

    def start_realtime(self) -> None:
        """Subscribe to every remote collection.

        The first delivery of each subscription only updates state; listeners
        are told once all collections have reported, and on every later
        change.
        """

        if self._subscriptions:
            return
        self._primed.clear()
        for collection in REMOTE_COLLECTIONS:
            callback = functools.partial(self._on_remote_change, collection)
            self._subscriptions.append(self.remote.subscribe(collection, callback))

    def _on_remote_change(self, collection: str, value: Any) -> None:
        first = collection not in self._primed
        self._primed.add(collection)
        if not self._sync_in_progress.acquire(blocking=False):
            logger.debug("remote change to %s deferred; push in flight", collection)
        else:
            try:
                self._apply_collection(collection, value)
            except MalformedRemoteDocument as exc:
                logger.warning("ignoring malformed %s update", collection, exc_info=exc)
            finally:
                self._sync_in_progress.release()
        if not first:
            if self.data_loaded:
                self.notify(collection)
            return
        if not self.data_loaded and self._primed.issuperset(REMOTE_COLLECTIONS):
            self.data_loaded = True
            self.notify("load")

    def _apply_collection(self, collection: str, value: Any) -> None:
        documents = normalize_collection(value)
        with self.store.lock:
            kind = _KIND_FOR_COLLECTION.get(collection)
            if kind in (KIND_PROJECT, KIND_FEEDBACK):
                self._merge_collection(kind, documents)
                if kind == KIND_PROJECT:
                    self.store.sync_image_cache()
            elif collection == COLLECTION_TASKS:
                self._adopt_children(COLLECTION_TASKS, self._remote_tasks(documents))
            elif collection == COLLECTION_NOTES:
                self._adopt_children(COLLECTION_NOTES, self._remote_notes(documents))
            self.store.persist()

    def stop_realtime(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for dispose in subscriptions:
            dispose()

    def close(self) -> None:
        self.stop_realtime()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def _log_unexpected_failure(future: Future[bool]) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("background sync failed", exc_info=exc)
