"""Preset sources: where preset JSON files are listed and fetched from.

Both sources expose the same two calls:

    list_files() -> list[SourceFile]     # complete listing, name filter applied
    read_text(SourceFile) -> str          # raw JSON text of one file

Listing failures raise ListingError (fatal to a load/sync); per-file read
failures raise SourceReadError (callers skip the file).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from presets.errors import ListingError, SourceReadError
from presets.models import SourceFile

if TYPE_CHECKING:
    from presets.config import PresetsConfig

logger = logging.getLogger("presets.sources")


@dataclass
class NameFilter:
    """Which file names count as presets: prefix, suffix, excluded substrings."""

    prefix: str = ""
    suffix: str = ".json"
    exclude: list[str] = field(default_factory=list)

    def __call__(self, name: str) -> bool:
        if not name or not name.startswith(self.prefix) or not name.endswith(self.suffix):
            return False
        return not any(marker in name for marker in self.exclude)


class PresetSource(Protocol):
    description: str

    def list_files(self) -> list[SourceFile]: ...

    def read_text(self, file: SourceFile) -> str: ...


# ---------------------------------------------------------------------------
# Local directory
# ---------------------------------------------------------------------------


class LocalDirectorySource:
    """Flat directory of preset files; the change marker is the file mtime."""

    def __init__(self, path: Path, name_filter: NameFilter | None = None) -> None:
        self.path = path
        self.name_filter = name_filter or NameFilter()
        self.description = str(path)

    def list_files(self) -> list[SourceFile]:
        try:
            entries = sorted(self.path.iterdir())
        except OSError as exc:
            msg = f"cannot list {self.path}: {exc}"
            raise ListingError(msg) from exc
        files: list[SourceFile] = []
        for p in entries:
            if not self.name_filter(p.name):
                continue
            try:
                if not p.is_file():
                    continue
                mtime = datetime.fromtimestamp(p.stat().st_mtime, UTC).isoformat()
            except OSError:
                logger.warning("cannot stat %s, skipped", p)
                continue
            files.append(SourceFile(file_name=p.name, key=str(p), last_modified=mtime))
        return files

    def read_text(self, file: SourceFile) -> str:
        try:
            return Path(file.key).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceReadError(file.file_name, str(exc)) from exc


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


class S3Source:
    """Objects under ``s3://bucket/prefix``; the change marker is LastModified.

    Requires boto3 (``pip install 'preset-analyzer[s3]'``) unless a client is
    passed in. Credentials come from the standard AWS chain (.env values are
    exported by load_config).
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        name_filter: NameFilter | None = None,
        *,
        region: str = "",
        client: Any = None,
    ) -> None:
        if not bucket:
            msg = "S3 source needs a bucket ([source] bucket in presets.toml)"
            raise ValueError(msg)
        self.bucket = bucket
        self.prefix = prefix
        self.name_filter = name_filter or NameFilter()
        self.description = f"s3://{bucket}/{prefix}"
        if client is None:
            import boto3

            client = boto3.client("s3", region_name=region or None)
        self._client = client

    def list_files(self) -> list[SourceFile]:
        files: list[SourceFile] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    name = key[len(self.prefix):] if key.startswith(self.prefix) else key
                    if not self.name_filter(name):
                        continue
                    modified = obj["LastModified"]
                    marker = modified.isoformat() if isinstance(modified, datetime) else str(modified)
                    files.append(SourceFile(file_name=name, key=key, last_modified=marker))
        except Exception as exc:
            msg = f"cannot list {self.description}: {exc}"
            raise ListingError(msg) from exc
        return files

    def read_text(self, file: SourceFile) -> str:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=file.key)
            return response["Body"].read().decode("utf-8")
        except Exception as exc:
            raise SourceReadError(file.file_name, str(exc)) from exc


def make_source(cfg: PresetsConfig) -> LocalDirectorySource | S3Source:
    src = cfg.source
    name_filter = NameFilter(prefix=src.name_prefix, suffix=src.suffix, exclude=list(src.exclude))
    if src.kind == "s3":
        return S3Source(src.bucket, src.prefix, name_filter, region=src.region)
    return LocalDirectorySource(src.path, name_filter)
