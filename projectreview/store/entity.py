"""Accessors for the metadata fields shared by all synced entities.

Remote documents may predate version tracking, so every accessor substitutes
a default instead of failing on a missing or malformed field.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Mapping
from typing import Any

from ..utils import EPOCH_ISO, format_iso, parse_timestamp, timestamp_or_epoch
from .types import (
    DELETED_AT_FIELD,
    ID_FIELD,
    KIND_PROJECT,
    LAST_MODIFIED_FIELD,
    NAME_FIELD,
    TYPE_FIELD,
    VERSION_FIELD,
    Entity,
)


def entity_kind(entity: Mapping[str, Any]) -> str:
    return str(entity.get(TYPE_FIELD) or "")


def natural_key(entity: Mapping[str, Any]) -> str:
    """Project name for projects, the entity's own id for everything else."""

    if entity_kind(entity) == KIND_PROJECT:
        name = entity.get(NAME_FIELD)
        if isinstance(name, str) and name:
            return name
    return str(entity.get(ID_FIELD) or "")


def entity_version(entity: Mapping[str, Any]) -> int:
    try:
        version = int(entity.get(VERSION_FIELD) or 0)
    except (TypeError, ValueError):
        return 1
    return max(1, version)


def last_modified(entity: Mapping[str, Any]) -> dt.datetime:
    parsed = parse_timestamp(entity.get(LAST_MODIFIED_FIELD))
    if parsed is not None:
        return parsed
    return timestamp_or_epoch(entity.get("timestamp"))


def deleted_at(entity: Mapping[str, Any]) -> dt.datetime | None:
    value = entity.get(DELETED_AT_FIELD)
    if value is None or value is False or value == "":
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        # Marked deleted without a usable time; treat as deleted at last edit.
        return last_modified(entity)
    return parsed


def is_tombstone(entity: Mapping[str, Any]) -> bool:
    return deleted_at(entity) is not None


def backfill_defaults(entity: Mapping[str, Any]) -> Entity:
    """Copy of ``entity`` with ``_version >= 1`` and ``_lastModified`` set."""

    filled = dict(entity)
    filled[VERSION_FIELD] = entity_version(entity)
    if parse_timestamp(filled.get(LAST_MODIFIED_FIELD)) is None:
        timestamp = filled.get("timestamp")
        filled[LAST_MODIFIED_FIELD] = (
            timestamp if parse_timestamp(timestamp) is not None else EPOCH_ISO
        )
    return filled


def bump(entity: Mapping[str, Any], *, now: str, **changes: Any) -> Entity:
    """Copy of ``entity`` with ``changes`` applied and its clock advanced."""

    updated = dict(entity)
    updated.update(changes)
    updated[VERSION_FIELD] = entity_version(entity) + 1
    updated[LAST_MODIFIED_FIELD] = now
    return updated


def tombstone(entity: Mapping[str, Any], *, now: str) -> Entity:
    """Soft-deleted copy of ``entity``.

    The deletion is stamped strictly after the copy's last modification, since
    a tombstone only beats a live copy it is newer than.
    """

    stamp = max(
        timestamp_or_epoch(now),
        last_modified(entity) + dt.timedelta(milliseconds=1),
    )
    deleted = format_iso(stamp)
    return bump(entity, now=deleted, **{DELETED_AT_FIELD: deleted})
