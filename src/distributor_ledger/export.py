"""CSV export for report and invoice rows.

Rows are mappings of column name to value. The header comes from the first
row's keys in their order, every field (header included) is double quoted with
embedded quotes doubled, and ``None`` becomes an empty field. Lines are joined
with ``\\n`` and the text has no trailing newline.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from . import log


def format_csv(rows: Sequence[Mapping[str, Any]]) -> str:
    """Render ``rows`` as CSV text; an empty sequence renders as ``""``."""

    if not rows:
        return ""

    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer,
        fieldnames=list(rows[0].keys()),
        restval="",
        extrasaction="ignore",
        quoting=csv.QUOTE_ALL,
        lineterminator="\n",
    )
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def write_csv(rows: Sequence[Mapping[str, Any]], destination: Path) -> Optional[Path]:
    """Write ``rows`` to ``destination`` as UTF-8 CSV.

    Nothing is written, and ``None`` is returned, when ``rows`` is empty.
    Parent directories are created on demand.

    Returns:
        Path | None: The resolved path of the written file.
    """

    if not rows:
        log.info("Nothing to export to '%s': no rows", destination)
        return None

    target = Path(destination).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(format_csv(rows), encoding="utf-8")
    log.info("Exported %d rows to '%s'", len(rows), target)
    return target
