from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".projectreview" / "mirror.sqlite"

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mirror (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open the mirror database, shared across threads behind the caller's lock."""

    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.OperationalError:
            # Some filesystems (network mounts) refuse WAL.
            conn.execute("PRAGMA journal_mode = DELETE")
        conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    current = int(conn.execute("PRAGMA user_version").fetchone()[0])
    if current >= SCHEMA_VERSION:
        return
    conn.executescript(_SCHEMA)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def open_database(db_path: Path | str) -> sqlite3.Connection:
    """Connect and initialize, starting over if the file is not a usable database.

    An unreadable file is renamed to ``<name>.corrupt-<timestamp>`` so it can
    be inspected later; the mirror then starts empty.
    """

    path = Path(db_path).expanduser()
    try:
        conn = connect(path)
        try:
            initialize_schema(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return conn
    except sqlite3.DatabaseError as exc:
        stamp = dt.datetime.now(dt.UTC).strftime("%Y%m%dT%H%M%S")
        moved = path.with_name(f"{path.name}.corrupt-{stamp}")
        logger.warning("mirror database %s is unreadable; moving it to %s", path, moved, exc_info=exc)
        path.replace(moved)
        for suffix in ("-wal", "-shm"):
            Path(f"{path}{suffix}").unlink(missing_ok=True)
    conn = connect(path)
    initialize_schema(conn)
    return conn
