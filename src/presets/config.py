"""PresetsConfig: project-local config for the preset analyzer.

Default layout (all relative to the project root):

    presets.toml          # project config
    .env                  # optional: AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_REGION
    .presets/
        presets.db        # SQLite record store (store mode only)
        .gitignore        # auto-written: ignores everything in .presets/

presets.toml example:

    [presets]
    name = "design-presets"
    mode = "store"            # memory = reload everything on refresh
                              # store  = incremental sync into SQLite

    [source]
    kind = "s3"               # or "local"
    path = "presets"          # local directory (kind = "local")
    bucket = "my-bucket"
    prefix = "default_presets_update/"
    name_prefix = "template_"
    suffix = ".json"
    exclude = ["school_"]

    [database]
    path = ".presets/presets.db"

    [server]
    host = "127.0.0.1"
    port = 7350

    [query]
    max_results = 10000
    preview_rows = 100
    default_columns = ["fileName", "controlTitle", "type", "className"]
    operators = "full"        # full | basic (includes, equals) | includes
    existence = "key"         # key = key present (even if null) | value = non-null value

    [sync]
    progress_every = 100
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from presets.models import DEFAULT_COLUMNS, OPERATOR_SETS, ExistenceMode

_CONFIG_FILENAME = "presets.toml"
_DEFAULT_INDEX_DIR = ".presets"
_GITIGNORE_CONTENT = "*\n"
_ENV_KEYS = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN", "AWS_REGION", "AWS_PROFILE")
_MODES = ("memory", "store")
_SOURCE_KINDS = ("local", "s3")


@dataclass
class SourceConfig:
    kind: str = "local"
    path: Path = field(default_factory=Path)    # resolved against the project root
    bucket: str = ""
    prefix: str = ""
    region: str = ""
    name_prefix: str = ""
    suffix: str = ".json"
    exclude: list[str] = field(default_factory=list)


@dataclass
class DatabaseConfig:
    path: Path = field(default_factory=Path)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 7350


@dataclass
class QueryConfig:
    max_results: int = 10000
    preview_rows: int = 100
    default_columns: list[str] = field(default_factory=lambda: list(DEFAULT_COLUMNS))
    operators: str = "full"
    existence: ExistenceMode = ExistenceMode.KEY


@dataclass
class SyncConfig:
    progress_every: int = 100


@dataclass
class PresetsConfig:
    """Resolved configuration for a preset analyzer project."""

    root: Path                      # directory that contains presets.toml
    name: str = ""
    mode: str = "memory"
    index_dir: Path = field(default_factory=Path)
    source: SourceConfig = field(default_factory=SourceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @property
    def db_path(self) -> Path:
        return self.database.path

    @property
    def config_path(self) -> Path:
        return self.root / _CONFIG_FILENAME

    def ensure_dirs(self) -> None:
        """Create index_dir (and its .gitignore) if missing."""
        self.index_dir.mkdir(parents=True, exist_ok=True)
        gitignore = self.index_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(_GITIGNORE_CONTENT)


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def _choice(section: dict[str, Any], key: str, default: str, allowed: tuple[str, ...] | list[str]) -> str:
    value = str(section.get(key, default))
    if value not in allowed:
        msg = f"{_CONFIG_FILENAME}: {key} must be one of {', '.join(allowed)} (got {value!r})"
        raise ValueError(msg)
    return value


def load_config(root: Path | str | None = None) -> PresetsConfig:
    """Load presets.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    # Secrets from .env go to os.environ so boto3 picks them up
    env = _load_env(root_path)
    for key in _ENV_KEYS:
        if key in env:
            os.environ.setdefault(key, env[key])

    main = raw.get("presets", {})
    src = raw.get("source", {})
    db = raw.get("database", {})
    srv = raw.get("server", {})
    qry = raw.get("query", {})
    syn = raw.get("sync", {})

    index_dir = root_path / main.get("index_dir", _DEFAULT_INDEX_DIR)
    db_rel = env.get("PRESETS_DB_PATH") or db.get("path")
    db_path = root_path / db_rel if db_rel else index_dir / "presets.db"

    return PresetsConfig(
        root=root_path,
        name=main.get("name", root_path.name),
        mode=_choice(main, "mode", "memory", _MODES),
        index_dir=index_dir,
        source=SourceConfig(
            kind=_choice(src, "kind", "local", _SOURCE_KINDS),
            path=root_path / src.get("path", "presets"),
            bucket=str(src.get("bucket", "")),
            prefix=str(src.get("prefix", "")),
            region=str(src.get("region", "") or env.get("AWS_REGION", "")),
            name_prefix=str(src.get("name_prefix", "")),
            suffix=str(src.get("suffix", ".json")),
            exclude=[str(x) for x in src.get("exclude", [])],
        ),
        database=DatabaseConfig(path=db_path),
        server=ServerConfig(
            host=str(srv.get("host", "127.0.0.1")),
            port=int(srv.get("port", 7350)),
        ),
        query=QueryConfig(
            max_results=int(qry.get("max_results", 10000)),
            preview_rows=int(qry.get("preview_rows", 100)),
            default_columns=[str(c) for c in qry.get("default_columns", DEFAULT_COLUMNS)],
            operators=_choice(qry, "operators", "full", list(OPERATOR_SETS)),
            existence=ExistenceMode(_choice(qry, "existence", "key", [m.value for m in ExistenceMode])),
        ),
        sync=SyncConfig(
            progress_every=max(1, int(syn.get("progress_every", 100))),
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for presets.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, name: str | None = None, kind: str = "local") -> Path:
    """Write a default presets.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"presets.toml already exists at {config_path}"
        raise FileExistsError(msg)
    if kind not in _SOURCE_KINDS:
        msg = f"source kind must be one of {', '.join(_SOURCE_KINDS)}"
        raise ValueError(msg)

    project_name = name or root.name
    mode = "store" if kind == "s3" else "memory"
    content = f"""\
[presets]
name = "{project_name}"
mode = "{mode}"   # memory = full reload on refresh, store = incremental sync into SQLite
# index_dir = ".presets"

[source]
kind = "{kind}"
path = "presets"                    # local directory of preset JSON files
# bucket = "gipper-static-assets"   # kind = "s3"; credentials from .env or the AWS chain
# prefix = "default_presets_update/"
# region = "us-east-1"
# name_prefix = "template_"
suffix = ".json"
# exclude = ["school_"]

# [database]
# path = ".presets/presets.db"

# [server]
# host = "127.0.0.1"
# port = 7350

# [query]
# max_results = 10000     # cap on store queries
# preview_rows = 100      # rows shown on screen; CSV export is never clipped
# default_columns = ["fileName", "controlTitle", "type", "className"]
# operators = "full"      # full | basic | includes
# existence = "key"       # key | value

# [sync]
# progress_every = 100
"""
    config_path.write_text(content)
    return config_path
