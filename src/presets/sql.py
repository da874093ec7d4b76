"""Lower filter predicates into SQLite WHERE fragments over JSON records.

Records live in ``objects.data`` as JSON text; properties are addressed with
``json_extract(data, '$."<prop>"')``. Text predicates compare the value's
text form case-insensitively (LIKE with escaped wildcards for includes).
A filter value that is exactly ``true``/``false`` or a JSON number is matched
against the typed JSON value instead, never as text.
"""

from __future__ import annotations

import re
from typing import Any

from presets.errors import InvalidRequestError
from presets.models import ExistenceMode, FilterPredicate, Operator
from presets.query import PredicateTranslator

Fragment = tuple[str, list[Any]]

_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_LIKE_ESCAPE = "\\"

# Text form of a JSON value, spelled like the in-memory side (true/false, not 1/0).
# py_lower is registered by get_conn; SQLite lower() folds ASCII only.
_TEXT_EXPR = (
    "CASE json_type(data, ?) "
    "WHEN 'true' THEN 'true' WHEN 'false' THEN 'false' "
    "ELSE CAST(json_extract(data, ?) AS TEXT) END"
)


def json_path(prop: str) -> str:
    if '"' in prop:
        msg = f"property names containing '\"' cannot be queried: {prop!r}"
        raise InvalidRequestError(msg)
    return f'$."{prop}"'


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def typed_value(value: str) -> bool | int | float | None:
    """Return the boolean/number a filter value denotes, or None for plain text."""
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _NUMBER_RE.fullmatch(value):
        if any(c in value for c in ".eE"):
            return float(value)
        return int(value)
    return None


def _negate(fragment: Fragment) -> Fragment:
    sql, params = fragment
    # absent/null values make the positive test NULL; coalesce turns that into a match
    return f"NOT coalesce({sql}, 0)", params


class SqlTranslator(PredicateTranslator[Fragment]):
    """Predicates → ``(sql, params)`` fragments for ``SELECT ... FROM objects WHERE``."""

    def _exists(self, path: str) -> Fragment:
        if self.existence is ExistenceMode.KEY:
            return "json_type(data, ?) IS NOT NULL", [path]
        return "json_extract(data, ?) IS NOT NULL", [path]

    def _typed(self, path: str, value: bool | int | float) -> Fragment:
        if isinstance(value, bool):
            return "json_type(data, ?) = ?", [path, "true" if value else "false"]
        return (
            "(json_type(data, ?) IN ('integer', 'real') AND json_extract(data, ?) = ?)",
            [path, path, value],
        )

    def _text(self, path: str, op: Operator, value: str) -> Fragment:
        needle = value.lower()
        if op in (Operator.INCLUDES, Operator.NOT_INCLUDES):
            return (
                f"py_lower({_TEXT_EXPR}) LIKE ? ESCAPE '{_LIKE_ESCAPE}'",
                [path, path, f"%{escape_like(needle)}%"],
            )
        return f"py_lower({_TEXT_EXPR}) = ?", [path, path, needle]

    def translate(self, predicate: FilterPredicate) -> Fragment:
        path = json_path(predicate.property)
        op = predicate.operator

        if op is Operator.EXISTS:
            return self._exists(path)
        if op is Operator.NOT_EXISTS:
            sql, params = self._exists(path)
            return f"NOT ({sql})", params

        typed = typed_value(predicate.value)
        positive = self._typed(path, typed) if typed is not None else self._text(path, op, predicate.value)
        return _negate(positive) if op.is_negated else positive

    def combine(self, fragments: list[Fragment]) -> Fragment:
        if not fragments:
            return "1", []
        sql = " AND ".join(f"({s})" for s, _ in fragments)
        params: list[Any] = []
        for _, p in fragments:
            params.extend(p)
        return sql, params
