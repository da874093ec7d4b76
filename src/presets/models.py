"""Data models: query requests/results, source listings, file and sync metadata.

Flat records themselves are plain ``dict[str, Any]`` (insertion ordered,
``fileName`` first). Preset documents are heterogeneous, so no schema is
imposed on them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from presets.errors import InvalidRequestError

Record = dict[str, Any]

DEFAULT_COLUMNS = ["fileName", "controlTitle", "type", "className"]


class Operator(str, Enum):
    INCLUDES = "includes"
    NOT_INCLUDES = "not_includes"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"

    @property
    def is_existence(self) -> bool:
        return self in (Operator.EXISTS, Operator.NOT_EXISTS)

    @property
    def is_negated(self) -> bool:
        return self in (Operator.NOT_INCLUDES, Operator.NOT_EQUALS, Operator.NOT_EXISTS)

    @classmethod
    def parse(cls, raw: str | None) -> Operator:
        """Parse an operator name. Empty means includes; ``exact`` is equals."""
        name = (raw or "").strip().lower()
        if not name:
            return cls.INCLUDES
        if name == "exact":
            return cls.EQUALS
        try:
            return cls(name)
        except ValueError:
            msg = f"unknown filter operator: {raw!r}"
            raise InvalidRequestError(msg) from None


# Named operator sets. "full" is the default; the others mirror the reduced
# UIs (includes/exact, and a single free-text box that always means includes).
OPERATOR_SETS: dict[str, frozenset[Operator]] = {
    "full": frozenset(Operator),
    "basic": frozenset({Operator.INCLUDES, Operator.EQUALS}),
    "includes": frozenset({Operator.INCLUDES}),
}


class ExistenceMode(str, Enum):
    KEY = "key"        # property exists when the record has the key, even if null
    VALUE = "value"    # property exists when its value is present and not null


@dataclass(frozen=True)
class FilterPredicate:
    property: str
    operator: Operator = Operator.INCLUDES
    value: str = ""

    @property
    def is_active(self) -> bool:
        """Blank predicates (from empty UI rows) are ignored, not rejected."""
        if not self.property:
            return False
        return self.operator.is_existence or self.value != ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FilterPredicate:
        if not isinstance(d, dict):
            msg = f"filter must be an object, got {type(d).__name__}"
            raise InvalidRequestError(msg)
        raw_value = d.get("value")
        if raw_value is None:
            value = ""
        elif isinstance(raw_value, bool):
            value = "true" if raw_value else "false"
        else:
            value = str(raw_value)
        return cls(
            property=str(d.get("property") or "").strip(),
            operator=Operator.parse(d.get("operator")),
            value=value,
        )

    @classmethod
    def parse(cls, text: str) -> FilterPredicate:
        """Parse ``PROPERTY:OPERATOR[:VALUE]`` (CLI form). Value may contain colons."""
        prop, sep, rest = text.partition(":")
        if not sep:
            msg = f"filter must look like PROPERTY:OPERATOR[:VALUE], got {text!r}"
            raise InvalidRequestError(msg)
        op, _, value = rest.partition(":")
        return cls(property=prop.strip(), operator=Operator.parse(op), value=value)

    def to_dict(self) -> dict[str, str]:
        return {"property": self.property, "operator": self.operator.value, "value": self.value}


@dataclass
class QueryRequest:
    filters: list[FilterPredicate] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> QueryRequest:
        payload = payload or {}
        if not isinstance(payload, dict):
            msg = "request body must be a JSON object"
            raise InvalidRequestError(msg)
        raw_filters = payload.get("filters") or []
        raw_columns = payload.get("columns") or []
        if not isinstance(raw_filters, list) or not isinstance(raw_columns, list):
            msg = "'filters' and 'columns' must be lists"
            raise InvalidRequestError(msg)
        return cls(
            filters=[FilterPredicate.from_dict(f) for f in raw_filters],
            columns=[str(c) for c in raw_columns if str(c).strip()],
        )


@dataclass
class QueryResult:
    columns: list[str]
    results: list[Record]

    @property
    def count(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "columns": self.columns, "results": self.results}


@dataclass(frozen=True)
class SourceFile:
    """One entry of a source listing."""

    file_name: str       # identifies the preset; becomes the record's fileName
    key: str             # object key (S3) or absolute path (local)
    last_modified: str   # opaque change marker


@dataclass
class FileMetadata:
    file_name: str
    key: str
    last_modified: str
    object_count: int = 0
    synced_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileName": self.file_name,
            "key": self.key,
            "lastModified": self.last_modified,
            "objectCount": self.object_count,
            "syncedAt": self.synced_at,
        }


@dataclass
class SyncMetadata:
    file_count: int = 0
    object_count: int = 0
    last_sync: str | None = None


@dataclass
class SyncReport:
    processed: int = 0
    failed: int = 0
    deleted: int = 0
    unchanged: int = 0
    objects_inserted: int = 0
    file_count: int = 0
    object_count: int = 0
    last_sync: str | None = None
    elapsed: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processedCount": self.processed,
            "failedCount": self.failed,
            "deletedCount": self.deleted,
            "unchangedCount": self.unchanged,
            "totalObjects": self.objects_inserted,
            "fileCount": self.file_count,
            "objectCount": self.object_count,
            "lastSync": self.last_sync,
            "elapsed": round(self.elapsed, 2),
        }


@dataclass
class CatalogStatus:
    mode: str
    ready: bool
    file_count: int = 0
    object_count: int = 0
    last_loaded: str | None = None
    version: int = 0
    loading: bool = False
    properties: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "ready": self.ready,
            "fileCount": self.file_count,
            "objectCount": self.object_count,
            "lastLoaded": self.last_loaded,
            "version": self.version,
            "loading": self.loading,
            "properties": self.properties,
        }
