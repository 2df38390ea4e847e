"""Read raw rows from a CSV export that may carry a preamble above the header.

The institution's movement report puts two title lines above the real header
(headers on the third row). Rather than hard-coding the offset, the reader
scans the first ``max_scan`` lines for the first row that contains every
required column and treats it as the header.

Failure mode
------------
If no such row exists a ``csv.Error`` is raised naming the missing columns,
which the CLI reports as a parse failure.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable
from typing import TextIO

from ..column_mapping import DEFAULT_COLUMN_MAPPINGS, ColumnMapping


def _norm(cell: str | None) -> str:
    return " ".join((cell or "").replace("\ufeff", "").split())


def required_columns(mappings: Iterable[ColumnMapping]) -> list[str]:
    """Columns that must be present to import: the ``transaction_import`` ones."""

    return [m.column for m in mappings if m.purpose == "transaction_import"]


def read_csv_rows(
    file: TextIO,
    *,
    mappings: Iterable[ColumnMapping] = DEFAULT_COLUMN_MAPPINGS,
    max_scan: int = 20,
) -> list[tuple[int, dict[str, str]]]:
    """Return ``(sheet_row_number, row)`` pairs below the detected header.

    Row numbers are 1-based positions in the file, so they can be quoted back
    to the operator. Blank lines are skipped.
    """

    required = [_norm(c) for c in required_columns(mappings)]
    lines = list(csv.reader(file))

    header_idx: int | None = None
    best_missing: list[str] = required
    for idx, line in enumerate(lines[:max_scan]):
        cells = {_norm(c) for c in line}
        missing = [c for c in required if c not in cells]
        if not missing:
            header_idx = idx
            break
        if len(missing) < len(best_missing):
            best_missing = missing
    if header_idx is None:
        raise csv.Error(
            "could not locate the header row in the first "
            f"{max_scan} lines. Missing columns: " + ", ".join(best_missing)
        )

    header = [_norm(c) for c in lines[header_idx]]
    out: list[tuple[int, dict[str, str]]] = []
    for offset, line in enumerate(lines[header_idx + 1 :], start=header_idx + 2):
        if not any((c or "").strip() for c in line):
            continue
        row = {name: (line[i] if i < len(line) else "") for i, name in enumerate(header) if name}
        out.append((offset, row))
    return out


__all__ = ["read_csv_rows", "required_columns"]
