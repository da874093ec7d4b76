"""Incremental sync: source listing → SQLite record store.

One pass is List → Diff → Apply:

    List    source.list_files() (ListingError aborts before anything is written)
    Diff    compare change markers against file_metadata by file name
    Apply   delete vanished files; re-flatten and swap in changed/new files;
            rewrite the sync summary

Unchanged files are neither fetched nor re-flattened. A file that fails to
fetch or parse is logged and skipped, keeping whatever was stored for it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from presets.errors import SourceReadError
from presets.flattener import flatten_text
from presets.models import FileMetadata, SourceFile, SyncReport
from presets.progress import NullChannel, ProgressChannel

if TYPE_CHECKING:
    from presets.sources import PresetSource
    from presets.store import RecordStore

logger = logging.getLogger("presets.sync")


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class SyncPlan:
    to_sync: list[SourceFile] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_sync and not self.to_delete


def plan_sync(remote: Iterable[SourceFile], stored: Mapping[str, FileMetadata]) -> SyncPlan:
    """Diff a source listing against stored file metadata."""
    plan = SyncPlan()
    seen: set[str] = set()
    for file in remote:
        if file.file_name in seen:
            continue
        seen.add(file.file_name)
        existing = stored.get(file.file_name)
        if existing is None or existing.last_modified != file.last_modified:
            plan.to_sync.append(file)
        else:
            plan.unchanged.append(file.file_name)
    plan.to_delete = sorted(name for name in stored if name not in seen)
    return plan


class SyncCoordinator:
    def __init__(
        self,
        source: PresetSource,
        store: RecordStore,
        *,
        progress_every: int = 100,
        clock: Callable[[], str] = _utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.progress_every = max(1, progress_every)
        self._clock = clock

    def plan(self) -> SyncPlan:
        return plan_sync(self.source.list_files(), self.store.file_metadata())

    def _sync_file(self, file: SourceFile) -> int:
        records = flatten_text(self.source.read_text(file), file.file_name)
        meta = FileMetadata(
            file_name=file.file_name,
            key=file.key,
            last_modified=file.last_modified,
            object_count=len(records),
            synced_at=self._clock(),
        )
        return self.store.replace_file(meta, records)

    def run(self, channel: ProgressChannel | None = None) -> SyncReport:
        channel = channel or NullChannel()
        started = time.monotonic()
        report = SyncReport()

        logger.info("sync: listing %s", self.source.description)
        channel.emit("list", f"Listing files in {self.source.description}…")
        remote = self.source.list_files()
        channel.emit("list", f"Found {len(remote)} files")

        plan = plan_sync(remote, self.store.file_metadata())
        report.unchanged = len(plan.unchanged)
        logger.info(
            "sync: %d to sync, %d to delete, %d unchanged",
            len(plan.to_sync), len(plan.to_delete), len(plan.unchanged),
        )
        channel.emit(
            "diff",
            f"{len(plan.to_sync)} to sync, {len(plan.to_delete)} to delete, {len(plan.unchanged)} unchanged",
        )

        if plan.to_delete:
            report.deleted = self.store.delete_files(plan.to_delete)
            logger.info("sync: deleted %d files", report.deleted)
            channel.emit("delete", f"Deleted {report.deleted} files")

        total = len(plan.to_sync)
        for i, file in enumerate(plan.to_sync, 1):
            try:
                report.objects_inserted += self._sync_file(file)
                report.processed += 1
            except SourceReadError:
                report.failed += 1
                logger.exception("sync: failed to process %s", file.file_name)
            if i % self.progress_every == 0 or i == total:
                logger.info("sync: processed %d/%d files", i, total)
                channel.emit("sync", f"Processed {i}/{total} files", processed=i, total=total)

        summary = self.store.write_sync_metadata(self._clock())
        report.file_count = summary.file_count
        report.object_count = summary.object_count
        report.last_sync = summary.last_sync
        report.elapsed = time.monotonic() - started

        logger.info(
            "sync complete in %.2fs: processed %d files (%d objects), %d failed; store has %d files, %d objects",
            report.elapsed, report.processed, report.objects_inserted, report.failed,
            report.file_count, report.object_count,
        )
        channel.emit("done", f"Sync complete: {report.processed} files processed, {report.failed} failed")
        return report
