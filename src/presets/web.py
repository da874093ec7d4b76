"""HTTP server: JSON API plus a single-page UI for filtering and exporting presets.

Routes:
    GET  /                  → filter / column picker / preview / CSV download page
    GET  /api/status        → {mode, ready, fileCount, objectCount, lastLoaded, properties, ...}
    POST /api/search        → {filters, columns} → {count, columns, results}
    POST /api/export        → same body → text/csv attachment (full result, not clipped)
    POST /api/refresh       → reload (memory) or sync (store), blocking; returns the report
    GET  /api/sync/events   → same, streamed: SSE 'progress' events then 'complete' or 'failed'

Errors come back as {"error": message, "code": ...}: 400 invalid request,
409 refresh already running, 502 source listing failed, 503 not ready or
store unavailable.
"""

from __future__ import annotations

import html as _html
import json
import logging
import queue
import socketserver
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any

from presets.errors import (
    InvalidRequestError,
    ListingError,
    NotReadyError,
    PresetsError,
    RefreshInProgressError,
    StoreUnavailableError,
)
from presets.export import export_filename, to_csv
from presets.models import OPERATOR_SETS, Operator, QueryRequest
from presets.progress import ProgressChannel

if TYPE_CHECKING:
    from presets.catalog import MemoryCatalog, StoreCatalog
    from presets.config import PresetsConfig

logger = logging.getLogger("presets.web")

_PING_SECONDS = 15.0

# ─── Error mapping ───────────────────────────────────────────────────────────

_ERROR_STATUS: list[tuple[type[PresetsError], int, str]] = [
    (InvalidRequestError, 400, "invalid_request"),
    (RefreshInProgressError, 409, "busy"),
    (ListingError, 502, "listing_failed"),
    (NotReadyError, 503, "not_ready"),
    (StoreUnavailableError, 503, "store_unavailable"),
]


def error_payload(exc: PresetsError) -> tuple[int, dict[str, str]]:
    for cls, status, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status, {"error": str(exc), "code": code}
    return 500, {"error": str(exc), "code": "error"}


# ─── Page ────────────────────────────────────────────────────────────────────

_CSS = """
:root{--bg:#0f1115;--fg:#e6e6e6;--mt:#8b93a1;--ac:#5aa9ff;--bd:#272b33;--pn:#161a21;--er:#ff6b6b}
*{box-sizing:border-box}
body{margin:0;font:14px/1.45 system-ui,-apple-system,Segoe UI,sans-serif;background:var(--bg);color:var(--fg)}
nav{display:flex;align-items:center;gap:14px;padding:10px 18px;border-bottom:1px solid var(--bd);background:var(--pn)}
nav .brand{font-weight:600;color:var(--ac)}
#status-text{color:var(--mt);flex:1}
main{padding:16px 18px;display:grid;grid-template-columns:360px 1fr;gap:18px}
section{background:var(--pn);border:1px solid var(--bd);border-radius:6px;padding:12px}
h2{font-size:13px;text-transform:uppercase;letter-spacing:.05em;color:var(--mt);margin:4px 0 10px}
input,select,button{font:inherit;color:var(--fg);background:var(--bg);border:1px solid var(--bd);border-radius:4px;padding:4px 6px}
button{cursor:pointer}
button.primary{background:var(--ac);color:#000;border-color:var(--ac)}
button:disabled{opacity:.5;cursor:default}
.filter-row{display:grid;grid-template-columns:1fr 110px 1fr 26px;gap:4px;margin-bottom:6px}
.cols label{display:block;margin:2px 0}
.actions{display:flex;gap:8px;margin-top:12px}
.err{color:var(--er)}
.note{color:var(--mt);font-size:12px;margin:6px 0}
.table-wrap{overflow:auto;max-height:75vh}
table{border-collapse:collapse;width:100%;font-size:12px}
th,td{border-bottom:1px solid var(--bd);padding:4px 6px;text-align:left;white-space:nowrap;max-width:320px;overflow:hidden;text-overflow:ellipsis}
th{position:sticky;top:0;background:var(--pn)}
.empty-state{color:var(--mt);text-align:center;padding:24px}
"""

_JS = """
(function(){
  const CFG = JSON.parse(document.getElementById('cfg').textContent);
  const $ = (id) => document.getElementById(id);
  let lastRequest = null;

  function fmtDate(iso){
    if(!iso) return 'never';
    return new Date(iso).toLocaleString('en-US',{month:'long',day:'numeric',year:'numeric',hour:'2-digit',minute:'2-digit'});
  }
  function renderStatus(d){
    if(!d.ready){ $('status-text').textContent = 'No data loaded. Click Refresh.'; }
    else {
      $('status-text').textContent = d.fileCount.toLocaleString() + ' files | ' +
        d.objectCount.toLocaleString() + ' objects | Loaded: ' + fmtDate(d.lastLoaded);
    }
    const dl = $('props'); dl.innerHTML = '';
    for(const p of (d.properties || [])){ const o = document.createElement('option'); o.value = p; dl.appendChild(o); }
  }
  async function loadStatus(){
    try { renderStatus(await (await fetch('/api/status')).json()); }
    catch(e){ $('status-text').textContent = 'Error loading status'; }
  }

  function addFilter(){
    const row = document.createElement('div'); row.className = 'filter-row';
    const prop = document.createElement('input'); prop.placeholder = 'property'; prop.setAttribute('list','props');
    const op = document.createElement('select');
    for(const o of CFG.operators){ const opt = document.createElement('option'); opt.value = o; opt.textContent = o.replace('_',' '); op.appendChild(opt); }
    const val = document.createElement('input'); val.placeholder = 'value';
    const rm = document.createElement('button'); rm.textContent = '×'; rm.onclick = () => row.remove();
    op.onchange = () => { val.disabled = op.value.endsWith('exists'); };
    for(const el of [prop, val]) el.addEventListener('keypress', (e) => { if(e.key === 'Enter') search(); });
    row.append(prop, op, val, rm); $('filters').appendChild(row);
  }
  function getFilters(){
    return Array.from(document.querySelectorAll('.filter-row')).map((row) => {
      const [prop, op, val] = row.querySelectorAll('input,select');
      return {property: prop.value.trim(), operator: op.value, value: val.value.trim()};
    }).filter((f) => f.property);
  }
  function getColumns(){
    const cols = Array.from(document.querySelectorAll('input[name="column"]:checked')).map((cb) => cb.value);
    for(const c of $('extra-cols').value.split(',').map((s) => s.trim()).filter(Boolean)){
      if(!cols.includes(c)) cols.push(c);
    }
    return cols;
  }

  async function search(){
    const columns = getColumns();
    if(columns.length === 0){ alert('Please select at least one output column'); return; }
    const body = {filters: getFilters(), columns: columns};
    $('search-btn').disabled = true; $('download-btn').disabled = true; $('error').textContent = '';
    try {
      const res = await fetch('/api/search', {method:'POST', headers:{'Content-Type':'application/json'}, body: JSON.stringify(body)});
      const data = await res.json();
      if(!res.ok){ $('error').textContent = data.error || 'Search failed'; return; }
      lastRequest = body;
      displayResults(data);
      $('download-btn').disabled = data.count === 0;
    } catch(e){ $('error').textContent = 'Error performing search'; }
    finally { $('search-btn').disabled = false; }
  }
  function displayResults(data){
    $('result-count').textContent = '(' + data.count.toLocaleString() + ' found)';
    const head = $('table-head'), body = $('table-body');
    head.innerHTML = ''; body.innerHTML = '';
    if(data.count === 0){ body.innerHTML = '<tr><td colspan="100" class="empty-state">No results found</td></tr>'; $('preview-note').textContent = ''; return; }
    const hr = document.createElement('tr');
    for(const c of data.columns){ const th = document.createElement('th'); th.textContent = c; hr.appendChild(th); }
    head.appendChild(hr);
    for(const row of data.results.slice(0, CFG.previewRows)){
      const tr = document.createElement('tr');
      for(const c of data.columns){
        const td = document.createElement('td'); const v = row[c];
        td.textContent = v === null || v === undefined ? '' : String(v); td.title = td.textContent; tr.appendChild(td);
      }
      body.appendChild(tr);
    }
    $('preview-note').textContent = data.count > CFG.previewRows
      ? 'Showing first ' + CFG.previewRows + ' of ' + data.count.toLocaleString() + ' results. Download CSV for full data.' : '';
  }
  async function downloadCSV(){
    if(!lastRequest) return;
    const res = await fetch('/api/export', {method:'POST', headers:{'Content-Type':'application/json'}, body: JSON.stringify(lastRequest)});
    if(!res.ok){ $('error').textContent = 'Export failed'; return; }
    const m = /filename="([^"]+)"/.exec(res.headers.get('Content-Disposition') || '');
    const url = URL.createObjectURL(await res.blob());
    const a = document.createElement('a'); a.href = url; a.download = m ? m[1] : 'preset-analysis.csv'; a.click();
    URL.revokeObjectURL(url);
  }
  function refresh(){
    $('refresh-btn').disabled = true; $('status-text').textContent = 'Refreshing…';
    const es = new EventSource('/api/sync/events');
    const done = () => { es.close(); $('refresh-btn').disabled = false; };
    es.addEventListener('progress', (e) => {
      const d = JSON.parse(e.data);
      $('status-text').textContent = d.message + (d.total ? ' (' + d.processed + '/' + d.total + ')' : '');
    });
    es.addEventListener('complete', (e) => { renderStatus(JSON.parse(e.data).status); done(); });
    es.addEventListener('failed', (e) => { $('status-text').textContent = 'Refresh failed: ' + JSON.parse(e.data).error; done(); });
    es.onerror = () => { if(es.readyState === EventSource.CLOSED) return; $('status-text').textContent = 'Connection lost'; done(); };
  }

  $('add-filter-btn').onclick = addFilter;
  $('search-btn').onclick = search;
  $('download-btn').onclick = downloadCSV;
  $('refresh-btn').onclick = refresh;
  addFilter();
  loadStatus();
})();
"""


def _render_index(cfg: PresetsConfig, operators: list[str]) -> str:
    name = _html.escape(cfg.name)
    page_cfg = json.dumps({"previewRows": cfg.query.preview_rows, "operators": operators})
    page_cfg = page_cfg.replace("</", "<\\/")
    columns_html = "".join(
        f'<label><input type="checkbox" name="column" value="{_html.escape(c)}" checked> {_html.escape(c)}</label>'
        for c in cfg.query.default_columns
    )
    return (
        f'<!DOCTYPE html>\n<html lang="en">\n<head>'
        f'<meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1">'
        f'<title>Preset Analyzer · {name}</title>'
        f'<style>{_CSS}</style>'
        f'</head>\n<body>'
        f'<nav><span class="brand">{name}</span>'
        f'<span id="status-text">Loading…</span>'
        f'<button id="refresh-btn">↻ Refresh</button></nav>'
        f'<main>'
        f'<section><h2>Filters</h2><div id="filters"></div>'
        f'<button id="add-filter-btn">+ Add filter</button>'
        f'<h2 style="margin-top:18px">Columns</h2><div class="cols">{columns_html}</div>'
        f'<input id="extra-cols" list="props" placeholder="More columns, comma separated" style="width:100%;margin-top:6px">'
        f'<div class="actions"><button id="search-btn" class="primary">Search</button>'
        f'<button id="download-btn" disabled>Download CSV</button></div>'
        f'<div id="error" class="err"></div></section>'
        f'<section><h2>Results <span id="result-count"></span></h2>'
        f'<div id="preview-note" class="note"></div>'
        f'<div class="table-wrap"><table><thead id="table-head"></thead><tbody id="table-body"></tbody></table></div>'
        f'</section></main>'
        f'<datalist id="props"></datalist>'
        f'<script type="application/json" id="cfg">{page_cfg}</script>'
        f'<script>{_JS}</script>'
        f'</body></html>'
    )


# ─── SSE refresh ─────────────────────────────────────────────────────────────


def _stream_refresh(catalog: MemoryCatalog | StoreCatalog, wfile: Any) -> None:
    """Run a refresh in a worker thread and stream its progress as SSE.

    The refresh runs to completion even if the client goes away.
    """

    def _send(event: str, data: dict[str, Any]) -> bool:
        try:
            wfile.write(f"event: {event}\ndata: {json.dumps(data)}\n\n".encode())
            wfile.flush()
            return True
        except OSError:
            return False

    channel = ProgressChannel()
    events = channel.subscribe()
    outcome: dict[str, Any] = {}

    def _run() -> None:
        try:
            outcome["report"] = catalog.refresh(channel).to_dict()
        except PresetsError as exc:
            outcome["error"] = exc
        except Exception as exc:
            logger.exception("refresh failed")
            outcome["error"] = PresetsError(str(exc))

    worker = threading.Thread(target=_run, name="presets-refresh", daemon=True)
    worker.start()

    connected = True
    while connected and (worker.is_alive() or not events.empty()):
        try:
            ev = events.get(timeout=_PING_SECONDS)
        except queue.Empty:
            connected = _send("ping", {})
            continue
        connected = _send("progress", ev.to_dict())

    worker.join()
    channel.unsubscribe(events)
    if not connected:
        return
    if "error" in outcome:
        _, payload = error_payload(outcome["error"])
        _send("failed", payload)
    else:
        _send("complete", {"report": outcome.get("report", {}), "status": catalog.status().to_dict()})


# ─── HTTP handler ────────────────────────────────────────────────────────────


class _Handler(BaseHTTPRequestHandler):
    cfg: PresetsConfig                       # injected via make_handler()
    catalog: MemoryCatalog | StoreCatalog

    def do_GET(self) -> None:
        path = urllib.parse.urlparse(self.path).path
        try:
            if path in ("/", ""):
                self._html(_render_index(self.cfg, self._operators()))
            elif path == "/api/status":
                self._json(self.catalog.status().to_dict())
            elif path == "/api/sync/events":
                self._sync_events()
            else:
                self._json({"error": f"not found: {path}", "code": "not_found"}, 404)
        except PresetsError as exc:
            self._error(exc)

    def do_POST(self) -> None:
        path = urllib.parse.urlparse(self.path).path
        try:
            if path == "/api/search":
                result = self.catalog.search(self._query_request())
                self._json(result.to_dict())
            elif path == "/api/export":
                result = self.catalog.search(self._query_request())
                self._csv(to_csv(result.results, result.columns), export_filename())
            elif path in ("/api/refresh", "/api/sync"):
                report = self.catalog.refresh()
                self._json({"success": True, **report.to_dict(), "status": self.catalog.status().to_dict()})
            else:
                self._json({"error": f"not found: {path}", "code": "not_found"}, 404)
        except PresetsError as exc:
            self._error(exc)

    def _operators(self) -> list[str]:
        allowed = OPERATOR_SETS[self.cfg.query.operators]
        return [op.value for op in Operator if op in allowed]

    def _query_request(self) -> QueryRequest:
        length = int(self.headers.get("Content-Length", 0) or 0)
        raw = self.rfile.read(length).decode("utf-8", errors="replace") if length else ""
        try:
            payload = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            msg = f"request body is not valid JSON: {exc}"
            raise InvalidRequestError(msg) from exc
        return QueryRequest.from_dict(payload)

    def _sync_events(self) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream; charset=utf-8")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("X-Accel-Buffering", "no")
        self.send_header("Connection", "keep-alive")
        self.end_headers()
        _stream_refresh(self.catalog, self.wfile)

    def _error(self, exc: PresetsError) -> None:
        status, payload = error_payload(exc)
        if status >= 500 and not isinstance(exc, NotReadyError):
            logger.error("%s %s failed: %s", self.command, self.path, exc)
        self._json(payload, status)

    def _json(self, payload: Any, status: int = 200) -> None:
        self._send(json.dumps(payload).encode(), "application/json; charset=utf-8", status)

    def _csv(self, body: str, filename: str) -> None:
        self._send(
            body.encode(),
            "text/csv; charset=utf-8",
            extra={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    def _html(self, body: str, status: int = 200) -> None:
        self._send(body.encode(), "text/html; charset=utf-8", status)

    def _send(self, encoded: bytes, content_type: str, status: int = 200, extra: dict[str, str] | None = None) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(encoded)))
        for k, v in (extra or {}).items():
            self.send_header(k, v)
        self.end_headers()
        self.wfile.write(encoded)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("%s " + format, self.address_string(), *args)


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


def make_handler(cfg: PresetsConfig, catalog: MemoryCatalog | StoreCatalog) -> type[_Handler]:
    class _Bound(_Handler):
        pass
    _Bound.cfg = cfg
    _Bound.catalog = catalog
    return _Bound


def make_server(cfg: PresetsConfig, catalog: MemoryCatalog | StoreCatalog, host: str, port: int) -> HTTPServer:
    return _ThreadingHTTPServer((host, port), make_handler(cfg, catalog))


def serve(cfg: PresetsConfig, catalog: MemoryCatalog | StoreCatalog, host: str, port: int) -> None:
    """Start the web UI (blocking until Ctrl+C)."""
    server = make_server(cfg, catalog, host, port)
    print(f"presets web  →  http://{host}:{port}  ({catalog.mode} mode, Ctrl+C to stop)")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
