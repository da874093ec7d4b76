"""SQLite-backed record store: flat records, per-file metadata, sync summary.

Write side (used by the sync coordinator):
    replace_file(meta, records)   delete + insert + upsert metadata, one transaction
    delete_files(names)
    write_sync_metadata()         recount and overwrite the summary row

Read side (used by StoreCatalog):
    search(predicates, columns, ...)   filters lowered to SQL, capped at limit
    property_names(), sync_metadata(), file_metadata()
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import closing, contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from presets.db import get_conn
from presets.errors import StoreUnavailableError
from presets.models import ExistenceMode, FileMetadata, Record, SyncMetadata
from presets.query import project
from presets.sql import SqlTranslator

if TYPE_CHECKING:
    from pathlib import Path

    from presets.models import FilterPredicate

_SYNC_ROW_ID = "sync"


class RecordStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(get_conn(self.db_path)) as conn:
            try:
                yield conn
            except sqlite3.OperationalError as exc:
                msg = f"record store error ({self.db_path}): {exc}"
                raise StoreUnavailableError(msg) from exc

    # -- metadata ----------------------------------------------------------

    def file_metadata(self) -> dict[str, FileMetadata]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT file_name, key, last_modified, object_count, synced_at FROM file_metadata"
            ).fetchall()
        return {r[0]: FileMetadata(*r) for r in rows}

    def sync_metadata(self) -> SyncMetadata | None:
        """The summary row, or None if no sync has completed yet."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT file_count, object_count, last_sync FROM metadata WHERE id = ?",
                (_SYNC_ROW_ID,),
            ).fetchone()
        if row is None:
            return None
        return SyncMetadata(file_count=row[0] or 0, object_count=row[1] or 0, last_sync=row[2])

    def write_sync_metadata(self, now: str | None = None) -> SyncMetadata:
        meta = SyncMetadata(last_sync=now or datetime.now(UTC).isoformat())
        with self._connect() as conn, conn:
            meta.object_count = conn.execute("SELECT COUNT(*) FROM objects").fetchone()[0]
            meta.file_count = conn.execute("SELECT COUNT(*) FROM file_metadata").fetchone()[0]
            conn.execute(
                "INSERT OR REPLACE INTO metadata(id, file_count, object_count, last_sync) VALUES (?, ?, ?, ?)",
                (_SYNC_ROW_ID, meta.file_count, meta.object_count, meta.last_sync),
            )
        return meta

    # -- writes ------------------------------------------------------------

    def replace_file(self, meta: FileMetadata, records: Sequence[Record]) -> int:
        """Swap in a file's fresh records and metadata atomically."""
        with self._connect() as conn, conn:
            conn.execute("DELETE FROM objects WHERE file_name = ?", (meta.file_name,))
            conn.executemany(
                "INSERT INTO objects(file_name, data) VALUES (?, ?)",
                [(meta.file_name, json.dumps(r, ensure_ascii=False, allow_nan=False)) for r in records],
            )
            conn.execute(
                "INSERT OR REPLACE INTO file_metadata(file_name, key, last_modified, object_count, synced_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (meta.file_name, meta.key, meta.last_modified, len(records), meta.synced_at),
            )
        return len(records)

    def delete_files(self, file_names: Sequence[str]) -> int:
        if not file_names:
            return 0
        with self._connect() as conn, conn:
            for name in file_names:
                conn.execute("DELETE FROM objects WHERE file_name = ?", (name,))
                conn.execute("DELETE FROM file_metadata WHERE file_name = ?", (name,))
        return len(file_names)

    # -- reads -------------------------------------------------------------

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM objects").fetchone()[0]

    def records_for(self, file_name: str) -> list[Record]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM objects WHERE file_name = ? ORDER BY id", (file_name,)
            ).fetchall()
        return [json.loads(r[0]) for r in rows]

    def property_names(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT j.key FROM objects, json_each(objects.data) AS j ORDER BY j.key"
            ).fetchall()
        return [r[0] for r in rows]

    def search(
        self,
        predicates: Sequence[FilterPredicate],
        columns: Sequence[str],
        *,
        existence: ExistenceMode = ExistenceMode.KEY,
        limit: int | None = None,
    ) -> list[Record]:
        """Matching records projected to ``columns``, in insertion order."""
        where, params = SqlTranslator(existence).compile(predicates)
        sql = f"SELECT data FROM objects WHERE {where} ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params = [*params, limit]
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return project((json.loads(r[0]) for r in rows), columns)
