"""Catalogs: the objects the CLI and web server query, refresh and describe.

MemoryCatalog   loads every preset into an immutable Snapshot; refresh builds a
                new snapshot off to the side and swaps the reference, so
                readers never see a half-built record set.
StoreCatalog    records live in SQLite; refresh runs an incremental sync.

Both allow one refresh at a time: a second refresh while one is running
raises RefreshInProgressError instead of racing the first. Queries before the
first successful load/sync raise NotReadyError.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from presets.errors import NotReadyError, PresetsError, RefreshInProgressError, SourceReadError
from presets.flattener import flatten_text
from presets.models import CatalogStatus, QueryRequest, QueryResult, Record, SyncReport
from presets.progress import NullChannel, ProgressChannel
from presets.query import all_property_names, check_operators, filter_records, project, resolve_columns
from presets.sources import make_source
from presets.store import RecordStore
from presets.sync import SyncCoordinator

if TYPE_CHECKING:
    from presets.config import PresetsConfig, QueryConfig
    from presets.sources import PresetSource

logger = logging.getLogger("presets.catalog")


@dataclass(frozen=True)
class Snapshot:
    records: tuple[Record, ...]
    file_count: int
    loaded_at: str
    version: int
    properties: tuple[str, ...]


class _Catalog:
    mode = ""

    def __init__(self, query_cfg: QueryConfig) -> None:
        self.query_cfg = query_cfg
        self._refresh_lock = threading.Lock()

    @property
    def is_loading(self) -> bool:
        return self._refresh_lock.locked()

    @contextmanager
    def _exclusive(self, channel: ProgressChannel) -> Iterator[None]:
        if not self._refresh_lock.acquire(blocking=False):
            raise RefreshInProgressError
        try:
            yield
        except PresetsError as exc:
            channel.emit("error", str(exc))
            raise
        finally:
            self._refresh_lock.release()

    def _prepare(self, request: QueryRequest) -> list[str]:
        """Validate a request; returns the resolved output columns."""
        check_operators(request.filters, self.query_cfg.operators)
        return resolve_columns(request.columns, self.query_cfg.default_columns)


class MemoryCatalog(_Catalog):
    mode = "memory"

    def __init__(self, source: PresetSource, query_cfg: QueryConfig, *, progress_every: int = 100) -> None:
        super().__init__(query_cfg)
        self.source = source
        self.progress_every = max(1, progress_every)
        self._snapshot: Snapshot | None = None
        self._version = 0

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def _load(self, channel: ProgressChannel) -> tuple[Snapshot, SyncReport]:
        started = time.monotonic()
        report = SyncReport()
        channel.emit("list", f"Listing files in {self.source.description}…")
        files = self.source.list_files()
        logger.info("load: found %d files in %s", len(files), self.source.description)
        channel.emit("list", f"Found {len(files)} files")

        records: list[Record] = []
        for i, file in enumerate(files, 1):
            try:
                records.extend(flatten_text(self.source.read_text(file), file.file_name))
                report.processed += 1
            except SourceReadError:
                report.failed += 1
                logger.exception("load: failed to process %s", file.file_name)
            if i % self.progress_every == 0 or i == len(files):
                channel.emit("load", f"Loaded {i}/{len(files)} files", processed=i, total=len(files))

        self._version += 1
        snap = Snapshot(
            records=tuple(records),
            file_count=report.processed,
            loaded_at=datetime.now(UTC).isoformat(),
            version=self._version,
            properties=tuple(all_property_names(records)),
        )
        report.objects_inserted = report.object_count = len(records)
        report.file_count = snap.file_count
        report.last_sync = snap.loaded_at
        report.elapsed = time.monotonic() - started
        logger.info(
            "load: %d objects from %d files in %.2fs (%d failed)",
            len(records), report.processed, report.elapsed, report.failed,
        )
        return snap, report

    def refresh(self, channel: ProgressChannel | None = None) -> SyncReport:
        """Reload everything from the source and swap in the new snapshot."""
        channel = channel or NullChannel()
        with self._exclusive(channel):
            snap, report = self._load(channel)
            self._snapshot = snap
        channel.emit("done", f"Loaded {snap.file_count} files, {len(snap.records)} objects")
        return report

    def status(self) -> CatalogStatus:
        snap = self._snapshot
        if snap is None:
            return CatalogStatus(mode=self.mode, ready=False, loading=self.is_loading)
        return CatalogStatus(
            mode=self.mode,
            ready=True,
            file_count=snap.file_count,
            object_count=len(snap.records),
            last_loaded=snap.loaded_at,
            version=snap.version,
            loading=self.is_loading,
            properties=list(snap.properties),
        )

    def search(self, request: QueryRequest) -> QueryResult:
        snap = self._snapshot
        if snap is None:
            raise NotReadyError
        columns = self._prepare(request)
        matched = filter_records(snap.records, request.filters, self.query_cfg.existence)
        return QueryResult(columns=columns, results=project(matched, columns))


class StoreCatalog(_Catalog):
    mode = "store"

    def __init__(
        self,
        store: RecordStore,
        source: PresetSource,
        query_cfg: QueryConfig,
        *,
        progress_every: int = 100,
    ) -> None:
        super().__init__(query_cfg)
        self.store = store
        self.source = source
        self.progress_every = progress_every
        self._version = 0

    def refresh(self, channel: ProgressChannel | None = None) -> SyncReport:
        """Run one incremental sync pass."""
        channel = channel or NullChannel()
        with self._exclusive(channel):
            coordinator = SyncCoordinator(self.source, self.store, progress_every=self.progress_every)
            report = coordinator.run(channel)
            self._version += 1
        return report

    def status(self) -> CatalogStatus:
        meta = self.store.sync_metadata()
        if meta is None:
            return CatalogStatus(mode=self.mode, ready=False, loading=self.is_loading)
        return CatalogStatus(
            mode=self.mode,
            ready=True,
            file_count=meta.file_count,
            object_count=meta.object_count,
            last_loaded=meta.last_sync,
            version=self._version,
            loading=self.is_loading,
            properties=self.store.property_names(),
        )

    def search(self, request: QueryRequest) -> QueryResult:
        if self.store.sync_metadata() is None:
            raise NotReadyError
        columns = self._prepare(request)
        rows = self.store.search(
            request.filters,
            columns,
            existence=self.query_cfg.existence,
            limit=self.query_cfg.max_results,
        )
        return QueryResult(columns=columns, results=rows)


def build_catalog(cfg: PresetsConfig, mode: str | None = None) -> MemoryCatalog | StoreCatalog:
    """Catalog for the configured (or overridden) mode."""
    source = make_source(cfg)
    if (mode or cfg.mode) == "store":
        return StoreCatalog(
            RecordStore(cfg.db_path),
            source,
            cfg.query,
            progress_every=cfg.sync.progress_every,
        )
    return MemoryCatalog(source, cfg.query, progress_every=cfg.sync.progress_every)
