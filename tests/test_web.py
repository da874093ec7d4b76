from __future__ import annotations

import csv
import io
import json
import threading
import urllib.error
import urllib.request

import pytest

from presets.catalog import MemoryCatalog
from presets.config import load_config
from presets.errors import ListingError, NotReadyError, RefreshInProgressError, StoreUnavailableError
from presets.web import error_payload, make_server


@pytest.fixture
def server(tmp_path, source):
    cfg = load_config(tmp_path)
    catalog = MemoryCatalog(source, cfg.query)
    httpd = make_server(cfg, catalog, "127.0.0.1", 0)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    base = f"http://127.0.0.1:{httpd.server_address[1]}"
    yield base, catalog, source
    httpd.shutdown()
    httpd.server_close()
    thread.join(5)


def _call(url: str, body: object = None, raw: bytes | None = None):
    data = raw if raw is not None else (json.dumps(body).encode() if body is not None else None)
    req = urllib.request.Request(url, data=data, method="POST" if data is not None else "GET")
    if data is not None:
        req.add_header("Content-Type", "application/json")
    try:
        with urllib.request.urlopen(req, timeout=10) as resp:
            return resp.status, dict(resp.headers), resp.read()
    except urllib.error.HTTPError as exc:
        return exc.code, dict(exc.headers), exc.read()


def _sse(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_error_payload_mapping() -> None:
    assert error_payload(NotReadyError())[0] == 503
    assert error_payload(StoreUnavailableError("x")) == (503, {"error": "x", "code": "store_unavailable"})
    assert error_payload(RefreshInProgressError())[0] == 409
    assert error_payload(ListingError("x"))[0] == 502


def test_index_page(server) -> None:
    base, _, _ = server
    status, headers, body = _call(base + "/")
    assert status == 200
    assert headers["Content-Type"].startswith("text/html")
    page = body.decode()
    assert 'value="controlTitle"' in page
    assert '"operators": ["includes", "not_includes", "equals", "not_equals", "exists", "not_exists"]' in page


def test_search_before_refresh_is_503(server) -> None:
    base, _, _ = server
    status, _, body = _call(base + "/api/search", {"filters": [], "columns": []})
    assert status == 503
    assert json.loads(body)["code"] == "not_ready"
    status, _, body = _call(base + "/api/status")
    assert status == 200
    assert json.loads(body)["ready"] is False


def test_refresh_then_search(server) -> None:
    base, _, _ = server
    status, _, body = _call(base + "/api/refresh", {})
    payload = json.loads(body)
    assert status == 200
    assert payload["success"] is True
    assert payload["processedCount"] == 2
    assert payload["status"]["objectCount"] == 4

    status, _, body = _call(
        base + "/api/search",
        {"filters": [{"property": "controlTitle", "operator": "includes", "value": "team"}], "columns": ["fileName", "fontSize"]},
    )
    assert status == 200
    assert json.loads(body) == {
        "count": 1,
        "columns": ["fileName", "fontSize"],
        "results": [{"fileName": "template_a.json", "fontSize": 24}],
    }


def test_export_returns_csv_attachment(server) -> None:
    base, catalog, source = server
    source.put("template_c.json", {"body": {"objects": [{"type": "text", "controlTitle": 'Hi, "all"'}]}})
    catalog.refresh()
    status, headers, body = _call(
        base + "/api/export",
        {"filters": [{"property": "type", "operator": "equals", "value": "text"}], "columns": ["fileName", "controlTitle"]},
    )
    assert status == 200
    assert headers["Content-Type"].startswith("text/csv")
    assert 'filename="preset-analysis-' in headers["Content-Disposition"]
    rows = list(csv.reader(io.StringIO(body.decode())))
    assert rows == [
        ["fileName", "controlTitle"],
        ["template_a.json", "Team Name"],
        ["template_c.json", 'Hi, "all"'],
    ]


@pytest.mark.parametrize(
    "raw",
    [
        b"{not json",
        b'{"filters": "type"}',
        b'{"filters": [{"property": "type", "operator": "like", "value": "x"}]}',
    ],
)
def test_bad_requests_are_400(server, raw) -> None:
    base, catalog, _ = server
    catalog.refresh()
    status, _, body = _call(base + "/api/search", raw=raw)
    assert status == 400
    assert json.loads(body)["code"] == "invalid_request"


def test_listing_failure_is_502(server) -> None:
    base, _, source = server
    source.fail_listing = True
    status, _, body = _call(base + "/api/refresh", {})
    assert status == 502
    assert json.loads(body)["code"] == "listing_failed"


def test_unknown_route_is_404(server) -> None:
    base, _, _ = server
    assert _call(base + "/nope")[0] == 404
    assert _call(base + "/api/nope", {})[0] == 404


def test_sync_events_stream(server) -> None:
    base, _, _ = server
    status, headers, body = _call(base + "/api/sync/events")
    assert status == 200
    assert headers["Content-Type"].startswith("text/event-stream")
    events = _sse(body.decode())
    names = [name for name, _ in events]
    assert names[-1] == "complete"
    assert "progress" in names
    phases = [data["phase"] for name, data in events if name == "progress"]
    assert phases[0] == "list"
    assert phases[-1] == "done"
    assert events[-1][1]["status"]["ready"] is True


def test_sync_events_stream_reports_failure(server) -> None:
    base, _, source = server
    source.fail_listing = True
    _, _, body = _call(base + "/api/sync/events")
    name, data = _sse(body.decode())[-1]
    assert name == "failed"
    assert data["code"] == "listing_failed"
