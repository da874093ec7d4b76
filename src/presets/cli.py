"""presets CLI: flatten design presets into records, query them, export CSV.

Commands:
    presets init [NAME]        create presets.toml
    presets status             show config, store state and record counts
    presets load               load every preset into memory and summarize
    presets sync               incremental sync of the source into SQLite
    presets search             filter records (-f PROP:OP:VALUE), pick columns (-c), export (--csv)
    presets properties         list every property name seen in the records
    presets web                start the web UI
"""

from __future__ import annotations

import json
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from pathlib import Path

import click

from presets.catalog import MemoryCatalog, StoreCatalog, build_catalog
from presets.config import PresetsConfig, init_config, load_config
from presets.errors import PresetsError
from presets.export import write_csv
from presets.models import FilterPredicate, QueryRequest, QueryResult, SyncReport
from presets.progress import ProgressChannel, ProgressEvent

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> PresetsConfig:
    try:
        return load_config()
    except (ValueError, OSError) as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_progress(event: ProgressEvent) -> None:
    click.echo(f"  {event.message}")


def _console_channel() -> ProgressChannel:
    channel = ProgressChannel()
    channel.add_listener(_echo_progress)
    return channel


def _catalog(cfg: PresetsConfig, store: bool | None) -> MemoryCatalog | StoreCatalog:
    mode = None if store is None else ("store" if store else "memory")
    try:
        return build_catalog(cfg, mode)
    except (PresetsError, ValueError, ImportError) as exc:
        raise click.ClickException(str(exc)) from exc


def _refresh(catalog: MemoryCatalog | StoreCatalog, quiet: bool = False) -> SyncReport:
    try:
        return catalog.refresh(None if quiet else _console_channel())
    except PresetsError as exc:
        raise click.ClickException(str(exc)) from exc


def _ready(catalog: MemoryCatalog | StoreCatalog) -> None:
    """Memory catalogs start empty in a fresh process: load them first."""
    if isinstance(catalog, MemoryCatalog):
        _refresh(catalog, quiet=True)


def _print_table(result: QueryResult, limit: int) -> None:
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    console = Console()
    table = Table(show_header=True, header_style="bold")
    for col in result.columns:
        table.add_column(escape(col), overflow="ellipsis", max_width=48)
    for row in result.results[:limit]:
        table.add_row(*("" if row.get(c) is None else escape(str(row.get(c))) for c in result.columns))
    console.print(table)
    if result.count > limit:
        console.print(
            f"[dim]Showing first {limit} of {result.count} results. Use --csv for full data.[/dim]"
        )


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="preset-analyzer")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """presets: flatten, search and export design presets."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(message)s",
        stream=sys.stderr,
    )


# ---------------------------------------------------------------------------
# presets init
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
@click.option("--kind", type=click.Choice(["local", "s3"]), default="local", show_default=True)
def init(name: str | None, root: str, kind: str) -> None:
    """Create presets.toml in the project root."""
    root_path = Path(root).resolve()
    try:
        path = init_config(root_path, name=name, kind=kind)
    except FileExistsError as exc:
        raise click.ClickException(str(exc)) from exc
    cfg = load_config(root_path)
    cfg.ensure_dirs()
    click.echo(f"Created {path}")
    if kind == "local":
        click.echo(f"Put preset JSON files in {cfg.source.path}, then run `presets search` or `presets web`.")
    else:
        click.echo("Set bucket/prefix in presets.toml and AWS credentials in .env, then run `presets sync`.")


# ---------------------------------------------------------------------------
# presets status
# ---------------------------------------------------------------------------


@cli.command()
def status() -> None:
    """Show config and store status."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    console = Console()

    table = Table(title=f"presets: {cfg.name}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")

    try:
        _ver = _pkg_version("preset-analyzer")
    except PackageNotFoundError:
        _ver = "unknown"
    table.add_row("Version", _ver)
    table.add_row("Config", str(cfg.config_path) if cfg.config_path.exists() else "[yellow]none (defaults)[/yellow]")
    table.add_row("Mode", cfg.mode)
    if cfg.source.kind == "s3":
        table.add_row("Source", f"s3://{cfg.source.bucket}/{cfg.source.prefix}")
    else:
        table.add_row("Source", str(cfg.source.path))
    table.add_row("", "")

    if cfg.db_path.exists():
        catalog = _catalog(cfg, store=True)
        try:
            st = catalog.status()
        except PresetsError as exc:
            table.add_row("Store", f"[red]{exc}[/red]")
        else:
            table.add_row("Store", str(cfg.db_path))
            if st.ready:
                table.add_row("Files", str(st.file_count))
                table.add_row("Objects", str(st.object_count))
                table.add_row("Last sync", st.last_loaded or "")
                table.add_row("Properties", str(len(st.properties)))
            else:
                table.add_row("Last sync", "[yellow]never (run `presets sync`)[/yellow]")
    else:
        table.add_row("Store", "[dim]not created (memory mode or never synced)[/dim]")

    console.print(table)


# ---------------------------------------------------------------------------
# presets load / sync
# ---------------------------------------------------------------------------


@cli.command()
def load() -> None:
    """Load every preset into memory and print a summary."""
    cfg = _load_cfg()
    catalog = _catalog(cfg, store=False)
    report = _refresh(catalog)
    click.echo(
        f"Loaded {report.object_count} objects from {report.file_count} files "
        f"in {report.elapsed:.2f}s ({report.failed} failed)"
    )


@cli.command()
def sync() -> None:
    """Incrementally sync the configured source into the SQLite store."""
    cfg = _load_cfg()
    cfg.ensure_dirs()
    catalog = _catalog(cfg, store=True)
    report = _refresh(catalog)
    click.echo(
        f"Sync complete in {report.elapsed:.2f}s: processed {report.processed} files "
        f"({report.objects_inserted} objects), {report.failed} failed, "
        f"{report.deleted} deleted, {report.unchanged} unchanged"
    )
    click.echo(f"Store now has {report.file_count} files, {report.object_count} objects")


# ---------------------------------------------------------------------------
# presets search
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--filter", "-f", "filters", multiple=True, metavar="PROP:OP[:VALUE]",
              help="Filter, repeatable (ANDed). OP: includes, not_includes, equals, not_equals, exists, not_exists")
@click.option("--column", "-c", "columns", multiple=True, help="Output column, repeatable (default: configured columns)")
@click.option("--csv", "csv_path", type=click.Path(dir_okay=False, allow_dash=True), default=None,
              help="Write the full result as CSV ('-' for stdout)")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.option("--store/--memory", default=None, help="Query the SQLite store or load into memory (default: config mode)")
@click.option("--limit", "-l", default=None, type=int, help="Rows to show in the table (default: preview_rows)")
def search(
    filters: tuple[str, ...],
    columns: tuple[str, ...],
    csv_path: str | None,
    as_json: bool,
    store: bool | None,
    limit: int | None,
) -> None:
    """Filter flattened records and project columns."""
    cfg = _load_cfg()
    catalog = _catalog(cfg, store)
    try:
        request = QueryRequest(
            filters=[FilterPredicate.parse(f) for f in filters],
            columns=list(columns),
        )
        _ready(catalog)
        result = catalog.search(request)
    except PresetsError as exc:
        raise click.ClickException(str(exc)) from exc

    if csv_path == "-":
        write_csv(result.results, result.columns, sys.stdout)
        return
    if csv_path:
        with open(csv_path, "w", encoding="utf-8", newline="") as fp:
            write_csv(result.results, result.columns, fp)
        click.echo(f"Wrote {result.count} rows to {csv_path}")
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    elif not csv_path:
        click.echo(f"{result.count} found")
        _print_table(result, cfg.query.preview_rows if limit is None else limit)


@cli.command()
@click.option("--store/--memory", default=None, help="Read from the SQLite store or load into memory")
def properties(store: bool | None) -> None:
    """List every property name present in the records."""
    cfg = _load_cfg()
    catalog = _catalog(cfg, store)
    try:
        _ready(catalog)
        st = catalog.status()
    except PresetsError as exc:
        raise click.ClickException(str(exc)) from exc
    if not st.ready:
        raise click.ClickException("No data yet. Run `presets sync` first.")
    for name in st.properties:
        click.echo(name)


# ---------------------------------------------------------------------------
# presets web
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default from presets.toml)")
@click.option("--port", "-p", default=None, type=int, help="Port (default from presets.toml)")
@click.option("--store/--memory", default=None, help="Serve the SQLite store or an in-memory catalog")
@click.option("--no-load", is_flag=True, help="Memory mode: don't load presets at startup")
def web(host: str | None, port: int | None, store: bool | None, no_load: bool) -> None:
    """Start the web UI."""
    from presets.web import serve as _web_serve

    cfg = _load_cfg()
    catalog = _catalog(cfg, store)
    if isinstance(catalog, StoreCatalog):
        cfg.ensure_dirs()
    elif not no_load:
        click.echo("Loading presets…")
        try:
            report = catalog.refresh()
            click.echo(f"Loaded {report.object_count} objects from {report.file_count} files")
        except PresetsError as exc:
            click.echo(f"Initial load failed: {exc} (use Refresh in the UI)", err=True)
    _web_serve(cfg, catalog, host=host or cfg.server.host, port=port or cfg.server.port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
