from __future__ import annotations

import pytest

from presets.errors import InvalidRequestError, StoreUnavailableError
from presets.models import ExistenceMode, FileMetadata, FilterPredicate, Operator
from presets.query import filter_records
from presets.sql import escape_like, typed_value

R1 = {"fileName": "f1.json", "type": "rect", "className": "Box", "visible": True, "x": 10, "note": None}
R2 = {"fileName": "f1.json", "type": "text", "controlTitle": "50%_off Title", "x": 1.5}
R3 = {"fileName": "f2.json", "type": "group", "name": "G", "visible": False}
ALL = ["fileName", "type", "className", "controlTitle", "name", "visible", "x", "note"]


def P(prop: str, op: str = "includes", value: str = "") -> FilterPredicate:
    return FilterPredicate(prop, Operator.parse(op), value)


def _meta(name: str, marker: str = "m1") -> FileMetadata:
    return FileMetadata(file_name=name, key=f"presets/{name}", last_modified=marker, synced_at="2026-01-01T00:00:00+00:00")


@pytest.fixture
def loaded(store):
    store.replace_file(_meta("f1.json"), [R1, R2])
    store.replace_file(_meta("f2.json"), [R3])
    return store


def _types(rows) -> list[str]:
    return [r["type"] for r in rows]


def test_typed_value() -> None:
    assert typed_value("true") is True
    assert typed_value("FALSE") is False
    assert typed_value("10") == 10
    assert typed_value("-1.5e3") == -1500.0
    assert typed_value("01") is None
    assert typed_value("1.2.3") is None
    assert typed_value("rect") is None


def test_escape_like() -> None:
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


def test_text_includes_is_case_insensitive(loaded) -> None:
    assert _types(loaded.search([P("className", "includes", "BOX")], ["type"])) == ["rect"]


def test_like_wildcards_are_literal(loaded) -> None:
    assert _types(loaded.search([P("controlTitle", "includes", "%_o")], ["type"])) == ["text"]
    # unescaped, '0_' would match "0%" through the '_' wildcard
    assert loaded.search([P("controlTitle", "includes", "0_")], ["type"]) == []


def test_equals_and_not_equals(loaded) -> None:
    assert _types(loaded.search([P("type", "equals", "RECT")], ["type"])) == ["rect"]
    assert _types(loaded.search([P("type", "not_equals", "rect")], ["type"])) == ["text", "group"]
    assert _types(loaded.search([P("type", "exact", "group")], ["type"])) == ["group"]


def test_negations_hold_for_absent_properties(loaded) -> None:
    rows = loaded.search([P("className", "not_includes", "box")], ["type"])
    assert _types(rows) == ["text", "group"]


def test_boolean_values_match_typed(loaded) -> None:
    assert _types(loaded.search([P("visible", "equals", "true")], ["type"])) == ["rect"]
    assert _types(loaded.search([P("visible", "includes", "False")], ["type"])) == ["group"]
    assert _types(loaded.search([P("visible", "not_equals", "true")], ["type"])) == ["text", "group"]


def test_numeric_values_match_typed(loaded) -> None:
    assert _types(loaded.search([P("x", "equals", "10")], ["type"])) == ["rect"]
    assert _types(loaded.search([P("x", "equals", "1.5")], ["type"])) == ["text"]
    # typed match is exact: "1" does not match 10 or 1.5 as a substring
    assert loaded.search([P("x", "includes", "1")], ["type"]) == []


def test_existence_modes(loaded) -> None:
    assert _types(loaded.search([P("note", "exists")], ["type"], existence=ExistenceMode.KEY)) == ["rect"]
    assert loaded.search([P("note", "exists")], ["type"], existence=ExistenceMode.VALUE) == []
    assert _types(loaded.search([P("name", "not_exists")], ["type"])) == ["rect", "text"]


def test_limit_caps_results(loaded) -> None:
    assert len(loaded.search([], ["type"], limit=2)) == 2
    assert len(loaded.search([], ["type"])) == 3


def test_projection(loaded) -> None:
    rows = loaded.search([P("type", "equals", "group")], ["name", "missing", "fileName"])
    assert rows == [{"name": "G", "missing": None, "fileName": "f2.json"}]
    assert list(rows[0]) == ["name", "missing", "fileName"]


def test_quote_in_property_is_rejected(loaded) -> None:
    with pytest.raises(InvalidRequestError):
        loaded.search([P('bad"name', "equals", "x")], ["type"])


@pytest.mark.parametrize(
    "preds",
    [
        [P("type", "includes", "e")],
        [P("className", "not_includes", "bo")],
        [P("type", "equals", "GROUP")],
        [P("controlTitle", "not_equals", "50%_OFF title")],
        [P("note", "exists")],
        [P("controlTitle", "not_exists"), P("fileName", "includes", "f")],
    ],
)
def test_store_agrees_with_memory_for_text_predicates(loaded, preds) -> None:
    from_store = loaded.search(preds, ALL)
    in_memory = [{c: r.get(c) for c in ALL} for r in filter_records([R1, R2, R3], preds)]
    assert from_store == in_memory


def test_replace_file_is_idempotent(loaded) -> None:
    loaded.replace_file(_meta("f1.json", "m2"), [R1])
    assert loaded.count() == 2
    assert loaded.records_for("f1.json") == [R1]
    assert loaded.file_metadata()["f1.json"].last_modified == "m2"
    assert loaded.file_metadata()["f1.json"].object_count == 1


def test_delete_files(loaded) -> None:
    assert loaded.delete_files(["f1.json"]) == 1
    assert loaded.records_for("f1.json") == []
    assert set(loaded.file_metadata()) == {"f2.json"}
    assert loaded.delete_files([]) == 0


def test_sync_metadata(store) -> None:
    assert store.sync_metadata() is None
    store.replace_file(_meta("f1.json"), [R1, R2])
    meta = store.write_sync_metadata("2026-02-02T00:00:00+00:00")
    assert (meta.file_count, meta.object_count) == (1, 2)
    assert store.sync_metadata() == meta


def test_property_names(loaded) -> None:
    assert loaded.property_names() == sorted(ALL)


def test_empty_db_file_is_unavailable(tmp_path) -> None:
    from presets.store import RecordStore

    path = tmp_path / "presets.db"
    path.write_bytes(b"")
    with pytest.raises(StoreUnavailableError):
        RecordStore(path).count()


UNICODE = [
    {"fileName": "u.json", "type": "text", "controlTitle": "Équipe Ünited"},
    {"fileName": "u.json", "type": "text", "controlTitle": "ÅRHUS"},
    {"fileName": "u.json", "type": "rect"},
]


@pytest.mark.parametrize(
    "preds",
    [
        [P("controlTitle", "equals", "équipe ünited")],
        [P("controlTitle", "includes", "ÉQUIPE")],
        [P("controlTitle", "includes", "ünit")],
        [P("controlTitle", "not_includes", "ü")],
        [P("controlTitle", "not_equals", "århus")],
    ],
)
def test_store_case_folding_matches_memory_beyond_ascii(store, preds) -> None:
    store.replace_file(_meta("u.json"), UNICODE)
    columns = ["controlTitle"]
    in_memory = [{c: r.get(c) for c in columns} for r in filter_records(UNICODE, preds)]
    assert in_memory
    assert store.search(preds, columns) == in_memory


def test_non_finite_numbers_are_refused_at_write(loaded) -> None:
    with pytest.raises(ValueError):
        loaded.replace_file(_meta("nan.json"), [{"fileName": "nan.json", "opacity": float("nan")}])
    assert loaded.records_for("nan.json") == []
    assert _types(loaded.search([P("type", "equals", "rect")], ["type"])) == ["rect"]
