"""CSV export of query results.

Header = columns in request order. Fields containing a comma, quote or line
break are quoted with inner quotes doubled; None renders as an empty field.
"""

from __future__ import annotations

import csv
import io
from datetime import UTC, datetime
from typing import IO, TYPE_CHECKING, Any

from presets.query import as_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from presets.models import Record


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return as_text(value)


def write_csv(rows: Iterable[Record], columns: Sequence[str], fp: IO[str]) -> int:
    """Write rows to an open text stream. Returns the number of data rows."""
    writer = csv.writer(fp, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(columns)
    n = 0
    for row in rows:
        writer.writerow([_cell(row.get(col)) for col in columns])
        n += 1
    return n


def to_csv(rows: Iterable[Record], columns: Sequence[str]) -> str:
    buf = io.StringIO()
    write_csv(rows, columns, buf)
    return buf.getvalue()


def export_filename(now: datetime | None = None) -> str:
    stamp = int((now or datetime.now(UTC)).timestamp() * 1000)
    return f"preset-analysis-{stamp}.csv"
