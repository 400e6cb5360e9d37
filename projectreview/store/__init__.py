from __future__ import annotations

from ._store import EntityStore
from .mirror import LocalMirror
from .types import ChangeLogEntry, Entity, ImageRecord, RemoteTree, Task

__all__ = [
    "ChangeLogEntry",
    "Entity",
    "EntityStore",
    "ImageRecord",
    "LocalMirror",
    "RemoteTree",
    "Task",
]
