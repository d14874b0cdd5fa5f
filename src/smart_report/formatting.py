"""Shared text formatting helpers for smart-report.

Durations throughout smart-report are milliseconds; these helpers turn
them (and scores, identifiers and tables) into display strings used by
the HTML report and the CLI.
"""

from __future__ import annotations

import re

_ID_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9]")


def format_duration_ms(ms: float) -> str:
    """Format a millisecond duration compactly.

    Examples: ``'250ms'``, ``'1.5s'``, ``'2.3m'``.
    """
    if ms < 1000:
        return f"{ms:.0f}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    return f"{ms / 60000:.1f}m"


def format_score(score: float | None) -> str:
    """Format a flakiness score as a percentage, ``'-'`` when absent."""
    if score is None:
        return "-"
    return f"{score * 100:.0f}%"


def sanitize_id(text: str) -> str:
    """Replace every non-alphanumeric character with ``_``.

    The result is safe to use as an HTML element id.
    """
    return _ID_UNSAFE_RE.sub("_", text)


def truncate(text: str, max_len: int, suffix: str = "...") -> str:
    """Truncate text to *max_len*, adding *suffix* if truncated."""
    if len(text) <= max_len:
        return text
    if max_len <= len(suffix):
        return suffix[:max_len]
    return text[: max_len - len(suffix)] + suffix


def format_table(
    headers: list[str],
    rows: list[list[str]],
    *,
    alignments: list[str] | None = None,
    max_col_width: dict[int, int] | None = None,
    indent: int = 2,
) -> str:
    """Format a list of rows as an aligned text table.

    Column widths come from the content. Columns listed in
    *max_col_width* are truncated with :func:`truncate`; columns marked
    ``'r'`` in *alignments* are right-aligned.

    Args:
        headers: Column header strings.
        rows: List of rows, each a list of cell strings.
        alignments: Per-column alignment, ``'l'`` or ``'r'``.
        max_col_width: Column index to max width mapping.
        indent: Number of leading spaces per line.

    Returns:
        The formatted table as a string.
    """
    if not headers:
        return ""

    ncols = len(headers)
    aligns = list(alignments or [])
    aligns += ["l"] * (ncols - len(aligns))
    max_widths = max_col_width or {}

    table = [list(headers)]
    for row in rows:
        padded = list(row) + [""] * (ncols - len(row))
        table.append(padded[:ncols])

    for ci, max_w in max_widths.items():
        if ci < ncols:
            for line in table:
                line[ci] = truncate(line[ci], max_w)

    widths = [max(len(line[ci]) for line in table) for ci in range(ncols)]
    prefix = " " * indent

    lines: list[str] = []
    for line in table:
        cells = [
            cell.rjust(widths[ci]) if aligns[ci] == "r" else cell.ljust(widths[ci])
            for ci, cell in enumerate(line)
        ]
        lines.append((prefix + "  ".join(cells)).rstrip())
    return "\n".join(lines)
