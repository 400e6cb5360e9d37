"""Version/timestamp last-writer-wins merge with soft-delete tombstones.

``merge(local, remote)`` produces one collection both writers can adopt:

* an entity present on one side only is kept as-is;
* when both sides carry a tombstone the later deletion wins;
* a remote tombstone beats the local copy only if it is newer than the local
  copy's last modification, otherwise the local edit resurrects the entity
  (and symmetrically for a local tombstone); on equal times the live copy
  stays, whatever the versions;
* between two live copies the higher ``_version`` wins, then the later
  ``_lastModified``.

Remaining full ties are broken by the canonical JSON encoding of the two
documents so the winner never depends on which side is called "local";
byte-identical documents keep the remote copy.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..keys import sanitize_key
from ..store.entity import (
    backfill_defaults,
    deleted_at,
    entity_version,
    last_modified,
    natural_key,
)
from ..store.types import ID_FIELD, KIND_FEEDBACK, KIND_PROJECT, NAME_FIELD, TYPE_FIELD, Entity
from ..utils import canonical_json

logger = logging.getLogger(__name__)

KeyFn = Callable[[Mapping[str, Any]], str]


def _clock(entity: Mapping[str, Any]) -> tuple[int, dt.datetime]:
    return (entity_version(entity), last_modified(entity))


def _newer_clock(candidate: Mapping[str, Any], existing: Mapping[str, Any]) -> bool:
    candidate_clock = _clock(candidate)
    existing_clock = _clock(existing)
    if candidate_clock != existing_clock:
        return candidate_clock > existing_clock
    return canonical_json(candidate) > canonical_json(existing)


def local_wins(local: Mapping[str, Any], remote: Mapping[str, Any]) -> bool:
    """Whether ``local`` should replace ``remote`` for the same key."""

    local_deleted = deleted_at(local)
    remote_deleted = deleted_at(remote)
    if local_deleted is not None and remote_deleted is not None:
        if local_deleted != remote_deleted:
            return local_deleted > remote_deleted
        return _newer_clock(local, remote)
    # A tombstone only beats a live copy it is strictly newer than.
    if remote_deleted is not None:
        return remote_deleted <= last_modified(local)
    if local_deleted is not None:
        return local_deleted > last_modified(remote)
    return _newer_clock(local, remote)


def resolve(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Entity:
    if local_wins(local, remote):
        return backfill_defaults(local)
    return dict(remote)


def merge(
    local: Iterable[Mapping[str, Any]],
    remote: Iterable[Mapping[str, Any]],
    key: KeyFn = natural_key,
) -> list[Entity]:
    """Reconcile two collections of the same kind into one converged list."""

    working: dict[str, Entity] = {}
    for entity in remote:
        k = key(entity)
        if not k:
            logger.warning("dropping remote entity without a key: %r", entity)
            continue
        existing = working.get(k)
        if existing is None or local_wins(entity, existing):
            working[k] = dict(entity)
    for entity in local:
        k = key(entity)
        if not k:
            logger.warning("dropping local entity without a key: %r", entity)
            continue
        existing = working.get(k)
        if existing is None:
            working[k] = backfill_defaults(entity)
            continue
        working[k] = resolve(entity, existing)
    return list(working.values())


def remote_entities(
    collection: object, kind: str, *, name_for: Callable[[str], str] | None = None
) -> list[Entity]:
    """Flatten a remote ``{key: document}`` collection into entity documents.

    Missing ``type``/``projectName``/``id`` fields are filled from the
    collection key (through ``name_for`` for project names, since keys are
    sanitized); values that are not objects are skipped.
    """

    if collection is None:
        return []
    items: Iterable[tuple[str, Any]]
    if isinstance(collection, list):
        # The store returns arrays for collections keyed 0..n.
        items = ((str(i), v) for i, v in enumerate(collection) if v is not None)
    elif isinstance(collection, Mapping):
        items = ((str(k), v) for k, v in collection.items())
    else:
        logger.warning("ignoring malformed %s collection of type %s", kind, type(collection))
        return []
    entities: list[Entity] = []
    for remote_key, value in items:
        if not isinstance(value, Mapping):
            logger.warning("ignoring malformed %s document at %r", kind, remote_key)
            continue
        entity = dict(value)
        if not entity.get(TYPE_FIELD):
            entity[TYPE_FIELD] = kind
        if kind == KIND_PROJECT and not entity.get(NAME_FIELD):
            entity[NAME_FIELD] = name_for(remote_key) if name_for else remote_key
        if kind == KIND_FEEDBACK and not entity.get(ID_FIELD):
            entity[ID_FIELD] = remote_key
        entities.append(entity)
    return entities


def remote_path_key(entity: Mapping[str, Any]) -> str:
    return sanitize_key(natural_key(entity))


def changed_entities(
    merged: Iterable[Mapping[str, Any]],
    remote: Iterable[Mapping[str, Any]],
    key: KeyFn = natural_key,
) -> list[Entity]:
    """Entities of ``merged`` whose document differs from the remote copy."""

    remote_by_key = {key(e): canonical_json(e) for e in remote}
    return [
        dict(entity)
        for entity in merged
        if remote_by_key.get(key(entity)) != canonical_json(entity)
    ]
