"""Filter, project and describe flat record sets.

Predicates are ANDed. Each backend lowers them through a PredicateTranslator:
MemoryTranslator (here) builds Python callables over in-memory records;
SqlTranslator (presets.sql) builds WHERE fragments for the SQLite store.

Comparison rules shared by both backends:
    includes / equals           case-insensitive, on the value's text form
    not_includes / not_equals   true when the property is absent or null
    exists / not_exists         value ignored; "key" mode tests key presence,
                                "value" mode tests for a non-null value
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any, Generic, TypeVar

from presets.errors import InvalidRequestError
from presets.models import (
    OPERATOR_SETS,
    ExistenceMode,
    FilterPredicate,
    Operator,
    Record,
)

T = TypeVar("T")
RecordTest = Callable[[Record], bool]


def as_text(value: Any) -> str:
    """Text form used for comparisons and CSV cells (``true``/``false``; ``1.0`` -> ``1``)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def active_predicates(predicates: Iterable[FilterPredicate]) -> list[FilterPredicate]:
    return [p for p in predicates if p.is_active]


def check_operators(predicates: Iterable[FilterPredicate], operator_set: str = "full") -> None:
    """Reject predicates whose operator is outside the configured operator set."""
    try:
        allowed = OPERATOR_SETS[operator_set]
    except KeyError:
        msg = f"unknown operator set: {operator_set!r}"
        raise InvalidRequestError(msg) from None
    for p in active_predicates(predicates):
        if p.operator not in allowed:
            names = ", ".join(sorted(op.value for op in allowed))
            msg = f"operator {p.operator.value!r} is not enabled (allowed: {names})"
            raise InvalidRequestError(msg)


# ---------------------------------------------------------------------------
# Translator interface
# ---------------------------------------------------------------------------


class PredicateTranslator(Generic[T]):
    """Lower a conjunction of predicates into a backend-native form."""

    def __init__(self, existence: ExistenceMode = ExistenceMode.KEY) -> None:
        self.existence = existence

    def translate(self, predicate: FilterPredicate) -> T:
        raise NotImplementedError

    def combine(self, fragments: list[T]) -> Any:
        raise NotImplementedError

    def compile(self, predicates: Iterable[FilterPredicate]) -> Any:
        return self.combine([self.translate(p) for p in active_predicates(predicates)])


class MemoryTranslator(PredicateTranslator[RecordTest]):
    """Predicates → callables over in-memory records."""

    def _exists(self, record: Record, prop: str) -> bool:
        if self.existence is ExistenceMode.KEY:
            return prop in record
        return record.get(prop) is not None

    def translate(self, predicate: FilterPredicate) -> RecordTest:
        prop = predicate.property
        op = predicate.operator

        if op is Operator.EXISTS:
            return lambda r: self._exists(r, prop)
        if op is Operator.NOT_EXISTS:
            return lambda r: not self._exists(r, prop)

        needle = predicate.value.lower()
        if op in (Operator.INCLUDES, Operator.NOT_INCLUDES):
            def hit(text: str) -> bool:
                return needle in text
        else:
            def hit(text: str) -> bool:
                return text == needle
        negated = op.is_negated

        def test(record: Record) -> bool:
            value = record.get(prop)
            if value is None:
                return negated
            return hit(as_text(value).lower()) != negated

        return test

    def combine(self, fragments: list[RecordTest]) -> RecordTest:
        if not fragments:
            return lambda r: True
        return lambda r: all(f(r) for f in fragments)


# ---------------------------------------------------------------------------
# In-memory operations
# ---------------------------------------------------------------------------


def matches(
    record: Record,
    predicates: Sequence[FilterPredicate],
    existence: ExistenceMode = ExistenceMode.KEY,
) -> bool:
    """True when the record satisfies every active predicate."""
    return MemoryTranslator(existence).compile(predicates)(record)


def filter_records(
    records: Iterable[Record],
    predicates: Sequence[FilterPredicate],
    existence: ExistenceMode = ExistenceMode.KEY,
) -> list[Record]:
    test = MemoryTranslator(existence).compile(predicates)
    return [r for r in records if test(r)]


def project(records: Iterable[Record], columns: Sequence[str]) -> list[Record]:
    """Rows with exactly ``columns`` in order; absent properties become None."""
    return [{col: record.get(col) for col in columns} for record in records]


def all_property_names(records: Iterable[Record]) -> list[str]:
    names: set[str] = set()
    for record in records:
        names.update(record.keys())
    return sorted(names)


def resolve_columns(columns: Sequence[str], defaults: Sequence[str]) -> list[str]:
    """Requested columns, else the default projection. Neither → InvalidRequestError."""
    resolved = list(dict.fromkeys(columns or defaults))
    if not resolved:
        msg = "select at least one output column"
        raise InvalidRequestError(msg)
    return resolved
