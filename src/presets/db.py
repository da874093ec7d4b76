"""SQLite connection and schema for the record store.

Tables:
    objects(id, file_name, data)       one row per flat record; data = JSON text
    file_metadata(file_name, ...)      one row per synced source file
    metadata(id='sync', ...)           single sync summary row
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from presets.errors import StoreUnavailableError

if TYPE_CHECKING:
    from pathlib import Path

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS objects (
        id          INTEGER PRIMARY KEY,
        file_name   TEXT NOT NULL,
        data        TEXT NOT NULL       -- flat record as a JSON object
    );
    CREATE INDEX IF NOT EXISTS objects_file_name ON objects(file_name);

    CREATE TABLE IF NOT EXISTS file_metadata (
        file_name     TEXT PRIMARY KEY,
        key           TEXT NOT NULL,    -- S3 key or local path
        last_modified TEXT NOT NULL,    -- opaque change marker
        object_count  INTEGER DEFAULT 0,
        synced_at     TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS metadata (
        id            TEXT PRIMARY KEY,
        file_count    INTEGER DEFAULT 0,
        object_count  INTEGER DEFAULT 0,
        last_sync     TEXT
    );
"""


def _py_lower(value: object) -> object:
    return value.lower() if isinstance(value, str) else value


def get_conn(db_path: Path) -> sqlite3.Connection:
    """Open the store with WAL mode and make sure the schema exists."""
    # A 0-byte file is what a crashed first write leaves behind; sqlite would
    # happily open it and then fail later with an opaque error.
    if db_path.exists() and db_path.stat().st_size == 0:
        msg = f"SQLite DB is empty (0 bytes): {db_path}\nFix: rm {db_path}* && presets sync"
        raise StoreUnavailableError(msg)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
    except (OSError, sqlite3.Error) as exc:
        msg = f"cannot open record store {db_path}: {exc}"
        raise StoreUnavailableError(msg) from exc
    try:
        conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(_SCHEMA)
        conn.commit()
    except sqlite3.Error as exc:
        conn.close()
        msg = f"record store {db_path} is unusable (corrupt or locked?): {exc}"
        raise StoreUnavailableError(msg) from exc
    return conn
