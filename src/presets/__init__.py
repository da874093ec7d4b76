"""Preset analyzer: flatten design-preset JSON into records, query them, export CSV.

Preset files come from a local directory or an S3 prefix. Each file's
``body.objects`` tree (groups nest further ``objects``) becomes a flat list of
records, one per node, tagged with ``fileName``. Records can be held in
memory (full reload on refresh) or synced incrementally into SQLite:

    presets.toml
    .presets/
        presets.db        # objects, file_metadata, metadata (store mode)

Queries are ANDed property predicates (includes, not_includes, equals,
not_equals, exists, not_exists) plus a column projection.
"""

from presets.catalog import MemoryCatalog, StoreCatalog, build_catalog
from presets.config import PresetsConfig, init_config, load_config
from presets.flattener import flatten, flatten_text
from presets.models import FilterPredicate, Operator, QueryRequest, QueryResult
from presets.query import all_property_names, filter_records, matches, project

__all__ = [
    "FilterPredicate",
    "MemoryCatalog",
    "Operator",
    "PresetsConfig",
    "QueryRequest",
    "QueryResult",
    "StoreCatalog",
    "all_property_names",
    "build_catalog",
    "filter_records",
    "flatten",
    "flatten_text",
    "init_config",
    "load_config",
    "matches",
    "project",
]
