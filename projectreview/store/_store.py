from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..errors import StorageQuotaExceeded
from ..keys import KeyRegistry
from ..utils import from_json, now_iso, to_json
from .entity import backfill_defaults, entity_kind, is_tombstone, natural_key
from .mirror import (
    MIRROR_CHANGES_LOG,
    MIRROR_COMPLETED,
    MIRROR_CURRENT_USER,
    MIRROR_ENTITIES,
    MIRROR_IMAGE_CACHE,
    MIRROR_NOTES,
    MIRROR_TASKS,
    LocalMirror,
)
from .types import (
    CHANGE_LOG_LIMIT,
    ENTITY_KINDS,
    KIND_FEEDBACK,
    KIND_PROJECT,
    NAME_FIELD,
    STATUS_IN_PROGRESS,
    TYPE_FIELD,
    ActionType,
    ChangeLogEntry,
    Entity,
    Task,
)

logger = logging.getLogger(__name__)


def _kind_and_key(entity: Entity) -> tuple[str, str]:
    return entity_kind(entity), natural_key(entity)


class EntityStore:
    """In-process collection of projects, feedback, tasks and notes.

    The store is the local authority for the UI: every mutation lands here
    first and is mirrored to ``LocalMirror``; the sync layer reconciles it
    with the hosted store afterwards. All access is guarded by one re-entrant
    lock so background sync and foreground mutations never interleave inside
    a single operation.
    """

    def __init__(self, mirror: LocalMirror) -> None:
        self.mirror = mirror
        self.lock = threading.RLock()
        self.keys = KeyRegistry()
        self._entities: dict[str, list[Entity]] = {kind: [] for kind in ENTITY_KINDS}
        self.tasks: dict[str, list[Task]] = {}
        self.notes: dict[str, str] = {}
        self.image_cache: dict[str, list[dict[str, Any]]] = {}
        self.change_log: dict[str, list[ChangeLogEntry]] = {}
        self.completed: dict[str, bool] = {}
        self._current_user: str | None = None

    @classmethod
    def open(cls, db_path: Path | str, *, quota_bytes: int = 0) -> EntityStore:
        store = cls(LocalMirror(db_path, quota_bytes=quota_bytes))
        store.load()
        return store

    def close(self) -> None:
        self.mirror.close()

    # --- durable mirror -------------------------------------------------

    def _read_json(self, name: str, default: Any) -> Any:
        value = from_json(self.mirror.read(name), default)
        if not isinstance(value, type(default)):
            logger.warning("ignoring corrupt mirror entry %s", name)
            return default
        return value

    def load(self) -> None:
        """Read the durable mirror into memory. Never raises."""

        with self.lock:
            stored = self._read_json(MIRROR_ENTITIES, [])
            entities = [item for item in stored if isinstance(item, dict)]
            for kind in ENTITY_KINDS:
                self._entities[kind] = [e for e in entities if e.get(TYPE_FIELD) == kind]
            self.tasks = {
                str(k): [t for t in v if isinstance(t, dict)]
                for k, v in self._read_json(MIRROR_TASKS, {}).items()
                if isinstance(v, list)
            }
            self.notes = {
                str(k): v for k, v in self._read_json(MIRROR_NOTES, {}).items() if isinstance(v, str)
            }
            self.image_cache = {
                str(k): v
                for k, v in self._read_json(MIRROR_IMAGE_CACHE, {}).items()
                if isinstance(v, list)
            }
            self.change_log = {
                str(k): v
                for k, v in self._read_json(MIRROR_CHANGES_LOG, {}).items()
                if isinstance(v, list)
            }
            self.completed = {
                str(k): bool(v) for k, v in self._read_json(MIRROR_COMPLETED, {}).items()
            }
            user = self._read_json(MIRROR_CURRENT_USER, "")
            self._current_user = user or None
            self._rebuild_keys()

    def _rebuild_keys(self) -> None:
        self.keys.clear()
        for project in self._entities[KIND_PROJECT]:
            name = project.get(NAME_FIELD)
            if isinstance(name, str) and name:
                self.keys.register(name)

    def _write(self, name: str, value: Any) -> bool:
        try:
            self.mirror.write(name, to_json(value))
            return True
        except StorageQuotaExceeded as exc:
            logger.warning("mirror full writing %s; evicting cached images", name, exc_info=exc)
        if self._evict_stale_images() and name != MIRROR_IMAGE_CACHE:
            try:
                self.mirror.write(MIRROR_IMAGE_CACHE, to_json(self.image_cache))
            except StorageQuotaExceeded:
                logger.debug("image cache still over quota after eviction")
        # Retry once; ``value`` may be the image cache itself, now smaller.
        try:
            self.mirror.write(name, to_json(value))
            return True
        except StorageQuotaExceeded as exc:
            logger.warning("dropping mirror write for %s", name, exc_info=exc)
            return False

    def persist(self) -> bool:
        """Write entities, tasks and notes to the mirror.

        Returns False when a write was dropped for lack of space; the
        in-memory state stays authoritative for the session.
        """

        with self.lock:
            combined = [*self._entities[KIND_PROJECT], *self._entities[KIND_FEEDBACK]]
            ok = self._write(MIRROR_ENTITIES, combined)
            ok = self._write(MIRROR_TASKS, self.tasks) and ok
            ok = self._write(MIRROR_NOTES, self.notes) and ok
            return ok

    def persist_image_cache(self) -> bool:
        with self.lock:
            return self._write(MIRROR_IMAGE_CACHE, self.image_cache)

    def persist_change_log(self) -> bool:
        with self.lock:
            return self._write(MIRROR_CHANGES_LOG, self.change_log)

    def persist_completed(self) -> bool:
        with self.lock:
            return self._write(MIRROR_COMPLETED, self.completed)

    def clear(self) -> None:
        """Forget all local state, in memory and in the mirror."""

        with self.lock:
            self.mirror.clear()
            for kind in ENTITY_KINDS:
                self._entities[kind] = []
            self.tasks = {}
            self.notes = {}
            self.image_cache = {}
            self.change_log = {}
            self.completed = {}
            self._current_user = None
            self.keys.clear()

    # --- entities -------------------------------------------------------

    def upsert(self, entity: Entity) -> None:
        """Insert or replace by natural key. Does not touch version fields."""

        kind, key = _kind_and_key(entity)
        if kind not in self._entities:
            raise ValueError(f"unknown entity kind: {kind!r}")
        if not key:
            raise ValueError("entity has no natural key")
        with self.lock:
            items = self._entities[kind]
            for index, existing in enumerate(items):
                if _kind_and_key(existing)[1] == key:
                    items[index] = entity
                    break
            else:
                items.append(entity)
            if kind == KIND_PROJECT:
                self.keys.register(key)

    def get(self, kind: str, key: str) -> Entity | None:
        """First entity of ``kind`` under ``key``, tombstoned or not."""

        with self.lock:
            for entity in self._entities.get(kind, []):
                if _kind_and_key(entity)[1] == key:
                    return entity
        return None

    def all(self, kind: str) -> list[Entity]:
        with self.lock:
            return list(self._entities.get(kind, []))

    def replace(self, kind: str, entities: Iterable[Entity]) -> None:
        with self.lock:
            self._entities[kind] = list(entities)
            if kind == KIND_PROJECT:
                self._rebuild_keys()

    def remove(self, kind: str, key: str) -> None:
        """Forget every entity of ``kind`` under ``key`` without a tombstone."""

        with self.lock:
            self.replace(kind, (e for e in self.all(kind) if _kind_and_key(e)[1] != key))

    def list_live(self, kind: str) -> Iterator[Entity]:
        """Non-tombstoned entities of ``kind``, first occurrence per key.

        Recomputed on every call from a snapshot of the collection.
        """

        with self.lock:
            snapshot = list(self._entities.get(kind, []))
        seen: set[str] = set()
        for entity in snapshot:
            if is_tombstone(entity):
                continue
            key = _kind_and_key(entity)[1]
            if key in seen:
                continue
            seen.add(key)
            yield entity

    def live_project(self, name: str) -> Entity | None:
        for project in self.list_live(KIND_PROJECT):
            if project.get(NAME_FIELD) == name:
                return project
        return None

    def migrate_entities(self) -> bool:
        """One-shot backfill of fields older records lack."""

        changed = False
        with self.lock:
            for kind in ENTITY_KINDS:
                migrated: list[Entity] = []
                for entity in self._entities[kind]:
                    filled = backfill_defaults(entity)
                    if kind == KIND_PROJECT:
                        if not filled.get("status"):
                            filled["status"] = STATUS_IN_PROGRESS
                        if not isinstance(filled.get("tags"), list):
                            filled["tags"] = []
                    if filled != entity:
                        changed = True
                    migrated.append(filled)
                self._entities[kind] = migrated
        if changed:
            logger.info("migrated entities with status and version fields")
        return changed

    # --- tasks and notes ------------------------------------------------

    def project_tasks(self, name: str) -> list[Task]:
        with self.lock:
            return copy.deepcopy(self.tasks.get(name, []))

    def set_tasks(self, name: str, tasks: list[Task]) -> None:
        with self.lock:
            self.tasks[name] = tasks

    def set_note(self, name: str, text: str) -> None:
        with self.lock:
            self.notes[name] = text

    def drop_children(self, name: str) -> None:
        with self.lock:
            self.tasks.pop(name, None)
            self.notes.pop(name, None)
            self.change_log.pop(name, None)
            self.completed.pop(name, None)
            self.image_cache.pop(name, None)

    # --- image cache ----------------------------------------------------

    def cache_images(self, name: str, images: list[dict[str, Any]]) -> None:
        if not images:
            return
        with self.lock:
            self.image_cache[name] = list(images)

    def cached_images(self, name: str) -> list[dict[str, Any]] | None:
        with self.lock:
            return self.image_cache.get(name)

    def sync_image_cache(self) -> None:
        """Cache images of live projects and reattach them where missing."""

        with self.lock:
            projects = self._entities[KIND_PROJECT]
            for index, project in enumerate(projects):
                name = project.get(NAME_FIELD)
                if not isinstance(name, str):
                    continue
                images = project.get("images")
                if isinstance(images, list) and images:
                    self.image_cache[name] = list(images)
                    continue
                cached = self.image_cache.get(name)
                if cached:
                    projects[index] = {**project, "images": list(cached)}
            self.persist_image_cache()

    def _evict_stale_images(self) -> bool:
        with self.lock:
            live = {p.get(NAME_FIELD) for p in self.list_live(KIND_PROJECT)}
            stale = [name for name in self.image_cache if name not in live]
            for name in stale:
                del self.image_cache[name]
        if stale:
            logger.info("evicted cached images for %d removed projects", len(stale))
        return bool(stale)

    # --- change log, completion, user -----------------------------------

    def log_change(
        self, name: str, author: str, action_type: ActionType, description: str
    ) -> ChangeLogEntry:
        entry: ChangeLogEntry = {
            "timestamp": now_iso(),
            "author": author,
            "actionType": action_type,
            "description": description,
        }
        with self.lock:
            entries = self.change_log.setdefault(name, [])
            entries.insert(0, entry)
            del entries[CHANGE_LOG_LIMIT:]
            self.persist_change_log()
        return entry

    def changes(self, name: str) -> list[ChangeLogEntry]:
        with self.lock:
            return list(self.change_log.get(name, []))

    def toggle_completed(self, name: str) -> bool:
        with self.lock:
            value = not self.completed.get(name, False)
            self.completed[name] = value
            self.persist_completed()
        return value

    @property
    def current_user(self) -> str | None:
        return self._current_user

    def set_current_user(self, user: str) -> None:
        with self.lock:
            self._current_user = user
            self._write(MIRROR_CURRENT_USER, user)
