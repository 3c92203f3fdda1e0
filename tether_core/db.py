"""Local state for Tether - SQLite metadata table holding sync watermarks.

The state database is per clone and never synchronized; it records when
the record store and each workspace were last brought in sync so that
"updates-only" operations can filter by modification time.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from tether_core.config import get_state_db_path

__all__ = [
    "init_database",
    "get_db",
    "get_last_sync_time",
    "set_last_sync_time",
]

# SQL schema for metadata table
METADATA_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# Current schema version
SCHEMA_VERSION = 1


def init_database(db_path: str) -> sqlite3.Connection:
    """Initialize the state database with schema.

    Safe to call multiple times (idempotent).

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite database connection
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row

    conn.executescript(METADATA_TABLE_SQL)

    conn.execute(
        "INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    conn.commit()

    return conn


def get_db(root: Path) -> sqlite3.Connection:
    """Get state database connection for a tether root, initializing if needed."""
    return init_database(str(get_state_db_path(root)))


def get_last_sync_time(db: sqlite3.Connection, key: str) -> Optional[str]:
    """Get the ISO timestamp recorded for a sync watermark.

    Args:
        db: Database connection
        key: Watermark key (e.g. "last_sync:store" or "last_sync:<workspace dir>")

    Returns:
        ISO timestamp of last sync, or None if never synced
    """
    cursor = db.execute("SELECT value FROM metadata WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_last_sync_time(db: sqlite3.Connection, key: str, timestamp: str) -> None:
    """Record the ISO timestamp of a sync watermark.

    Args:
        db: Database connection
        key: Watermark key
        timestamp: ISO timestamp of the sync point
    """
    db.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        (key, timestamp),
    )
    db.commit()
