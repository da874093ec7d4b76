"""Flatten preset documents into flat records.

A preset document looks like::

    {"body": {"objects": [
        {"type": "group", "name": "G", "objects": [
            {"type": "rect", "className": "Box"}
        ]},
        ...
    ]}}

Every node under ``body.objects`` becomes one record, in pre-order (a group's
record precedes its children's). Only ``type == "group"`` nodes are descended
into. Nested dict/list values are stored as compact JSON text so each record
is a single-level mapping suitable for tabular display and CSV.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from presets.errors import SourceReadError
from presets.models import Record

logger = logging.getLogger("presets.flattener")

GROUP_TYPE = "group"
CHILDREN_KEY = "objects"
FILE_NAME_KEY = "fileName"

# Real presets nest a handful of levels; deeper input is truncated.
MAX_DEPTH = 256


def _to_text(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def flatten_node(node: dict[str, Any], file_name: str) -> Record:
    """Build the record for one node (children are not included)."""
    record: Record = {FILE_NAME_KEY: file_name}
    for key, value in node.items():
        if key == CHILDREN_KEY:
            continue
        if isinstance(value, (dict, list)):
            record[key] = _to_text(value)
        else:
            record[key] = value
    return record


def _is_group(node: dict[str, Any]) -> bool:
    children = node.get(CHILDREN_KEY)
    return node.get("type") == GROUP_TYPE and isinstance(children, list) and bool(children)


def _traverse(nodes: list[Any], file_name: str, out: list[Record], depth: int) -> None:
    if depth > MAX_DEPTH:
        logger.warning("%s: nesting deeper than %d levels, truncated", file_name, MAX_DEPTH)
        return
    for node in nodes:
        if not isinstance(node, dict):
            continue
        out.append(flatten_node(node, file_name))
        if _is_group(node):
            _traverse(node[CHILDREN_KEY], file_name, out, depth + 1)


def top_level_nodes(document: Any) -> list[Any]:
    """Return ``document.body.objects``, or [] if the path is missing or ill-typed."""
    if not isinstance(document, dict):
        return []
    body = document.get("body")
    if not isinstance(body, dict):
        return []
    objects = body.get(CHILDREN_KEY)
    return objects if isinstance(objects, list) else []


def flatten(document: Any, file_name: str) -> list[Record]:
    """Flatten a parsed preset into records. Malformed documents yield []."""
    out: list[Record] = []
    _traverse(top_level_nodes(document), file_name, out, depth=1)
    return out


def _reject_constant(name: str) -> Any:
    msg = f"non-standard JSON constant {name}"
    raise ValueError(msg)


def flatten_text(text: str, file_name: str) -> list[Record]:
    """Parse raw JSON text and flatten it. Unparseable text raises SourceReadError.

    NaN and Infinity are rejected: they cannot be stored as JSON or sent to a
    browser. Oversized integer literals and runaway nesting count as
    unparseable too.
    """
    try:
        document = json.loads(text, parse_constant=_reject_constant)
        return flatten(document, file_name)
    except (ValueError, TypeError, RecursionError) as exc:
        raise SourceReadError(file_name, f"invalid JSON: {exc}") from exc
