"""Output formatters shared by the listing commands."""

from __future__ import annotations

import csv
import io
import json


def format_as_json(payload: dict) -> str:
    """Format a result dict as indented JSON."""
    return json.dumps(payload, indent=2, default=str)


def format_as_csv(columns: list[str], rows: list[dict]) -> str:
    """Format rows as CSV with the given column headers."""
    buf = io.StringIO(newline="")
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([row.get(col, "") for col in columns])
    return buf.getvalue()


def format_as_table(
    header_line: str,
    items: list[dict],
    columns: list[str],
    col_labels: list[str] | None = None,
) -> str:
    """Format items as an aligned text table.

    Args:
        header_line: Summary line (e.g. "Found 5 key(s) under 'certs':").
        items: List of dicts, one per row.
        columns: Dict keys to include, in order.
        col_labels: Display labels for each column (defaults to title-cased keys).
    """
    labels = col_labels or [c.replace("_", " ").title() for c in columns]
    widths = [
        max(len(lbl), max((len(str(item.get(col, ""))) for item in items), default=0)) + 2
        for col, lbl in zip(columns, labels, strict=True)
    ]
    lines: list[str] = [header_line, ""]
    lines.append("".join(f"{lbl:<{w}}" for lbl, w in zip(labels, widths, strict=True)).rstrip())
    lines.append("-" * sum(widths))
    lines.extend(
        "".join(f"{item.get(col, '')!s:<{w}}" for col, w in zip(columns, widths, strict=True)).rstrip()
        for item in items
    )
    return "\n".join(lines)


def format_rows(output_format: str, header_line: str, payload_key: str, columns: list[str], rows: list[dict]) -> str:
    if output_format == "json":
        return format_as_json({payload_key: rows, "count": len(rows)})
    if output_format == "csv":
        return format_as_csv(columns, rows)
    return format_as_table(header_line, rows, columns)
