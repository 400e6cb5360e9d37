from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from .. import db
from ..errors import StorageQuotaExceeded
from ..utils import now_iso

# Names of the mirror entries, shared with the original browser cache layout.
MIRROR_ENTITIES = "projectReviewData"
MIRROR_TASKS = "projectTasks"
MIRROR_NOTES = "projectNotes"
MIRROR_IMAGE_CACHE = "projectImageCache"
MIRROR_CHANGES_LOG = "projectChangesLog"
MIRROR_COMPLETED = "completedProjects"
MIRROR_CURRENT_USER = "currentUser"

MIRROR_NAMES = (
    MIRROR_ENTITIES,
    MIRROR_TASKS,
    MIRROR_NOTES,
    MIRROR_IMAGE_CACHE,
    MIRROR_CHANGES_LOG,
    MIRROR_COMPLETED,
    MIRROR_CURRENT_USER,
)


class LocalMirror:
    """Durable string key-value mirror backed by SQLite.

    Reads and writes are synchronous. Writes that would push the total stored
    size past ``quota_bytes`` raise ``StorageQuotaExceeded`` and leave the
    previous value in place.
    """

    def __init__(self, db_path: Path | str, *, quota_bytes: int = 0) -> None:
        self.db_path = Path(db_path).expanduser()
        self.quota_bytes = max(0, int(quota_bytes))
        self._lock = threading.Lock()
        self.conn = db.open_database(self.db_path)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def read(self, name: str) -> str | None:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT value FROM mirror WHERE name = ?", (name,)
                ).fetchone()
            except sqlite3.Error:
                return None
        if row is None:
            return None
        return str(row["value"])

    def write(self, name: str, value: str) -> None:
        with self._lock:
            if self.quota_bytes:
                row = self.conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) AS used "
                    "FROM mirror WHERE name != ?",
                    (name,),
                ).fetchone()
                needed = int(row["used"] or 0) + len(value.encode("utf-8"))
                if needed > self.quota_bytes:
                    raise StorageQuotaExceeded(name, needed=needed, quota=self.quota_bytes)
            self.conn.execute(
                """
                INSERT INTO mirror(name, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (name, value, now_iso()),
            )
            self.conn.commit()

    def remove(self, name: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM mirror WHERE name = ?", (name,))
            self.conn.commit()

    def clear(self) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM mirror")
            self.conn.commit()

    def names(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute("SELECT name FROM mirror ORDER BY name").fetchall()
        return [str(row["name"]) for row in rows]
