"""Column → canonical field mapping for raw spreadsheet rows.

Row extraction and mapping storage live upstream; this module only defines
the mapping shape, the institution's static header mapping, and
:func:`map_row`, which turns a :data:`~pe_ledger.models.RawRow` into the
field-keyed dict the normalizer consumes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from .models import RawRow

# Canonical fields understood by :func:`pe_ledger.normalize.normalize`.
CANONICAL_FIELDS: frozenset[str] = frozenset(
    {
        "date",
        "amount",
        "currency",
        "transaction_type",
        "counterparty",
        "investment_name",
        "product_type",
        "description",
        "exchange_rate_to_ils",
        "amount_ils",
    }
)

Purpose = Literal["investment_discovery", "transaction_import", "warehousing"]


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    """Maps one source column to a canonical field.

    ``date_format`` is only meaningful on the ``date`` mapping and is passed
    through to the date parser as the preferred slash-date format.
    """

    column: str
    field: str
    purpose: Purpose = "transaction_import"
    date_format: str | None = None

    def __post_init__(self) -> None:
        if self.field not in CANONICAL_FIELDS:
            raise ValueError(
                f"unknown target field {self.field!r} for column {self.column!r}; "
                f"expected one of {sorted(CANONICAL_FIELDS)}"
            )


# Static mapping for the institution's movement report (Hebrew headers). The
# export puts these headers on the third row of the sheet.
DEFAULT_COLUMN_MAPPINGS: tuple[ColumnMapping, ...] = (
    ColumnMapping("תאור", "investment_name", "investment_discovery"),
    ColumnMapping("גוף מנהל", "counterparty", "investment_discovery"),
    ColumnMapping("סוג מוצר", "product_type", "investment_discovery"),
    ColumnMapping("תאריך התנועה", "date", "transaction_import"),
    ColumnMapping("סכום תנועה במטבע", "amount", "transaction_import"),
    ColumnMapping("מטבע התנועה", "currency", "transaction_import"),
    ColumnMapping("סוג תנועה", "transaction_type", "transaction_import"),
    ColumnMapping("שער המרה לתנועה", "exchange_rate_to_ils", "warehousing"),
    ColumnMapping('סכום תנועה בש"ח', "amount_ils", "warehousing"),
)

# Present in the export but deliberately not mapped.
IGNORED_COLUMNS: frozenset[str] = frozenset(
    {"לקוח אב", "מנהל לקוח", "שייכות", "סוג תנועה מורחב", "מספר חשבון"}
)


def _norm_header(name: Any) -> str:
    return " ".join(str(name).split()) if name is not None else ""


def map_row(raw_row: RawRow, mappings: Iterable[ColumnMapping]) -> dict[str, Any]:
    """Project ``raw_row`` onto canonical fields.

    Header names are compared after whitespace collapsing. Columns without a
    mapping are dropped; mapped columns absent from the row yield no key.
    """

    by_header = {_norm_header(k): v for k, v in raw_row.items()}
    out: dict[str, Any] = {}
    for m in mappings:
        key = _norm_header(m.column)
        if key in by_header:
            out[m.field] = by_header[key]
    return out


def date_format_from(mappings: Iterable[ColumnMapping]) -> str | None:
    """Return the preferred date format attached to the ``date`` mapping, if any."""

    for m in mappings:
        if m.field == "date" and m.date_format:
            return m.date_format
    return None


def mappings_from_dict(table: Mapping[str, str], *, date_format: str | None = None) -> tuple[
    ColumnMapping, ...
]:
    """Build mappings from a plain ``{column: field}`` dict."""

    return tuple(
        ColumnMapping(column, field, date_format=date_format if field == "date" else None)
        for column, field in table.items()
    )


def missing_columns(headers: Sequence[str], mappings: Iterable[ColumnMapping]) -> list[str]:
    """Return mapped columns that do not appear in ``headers`` (whitespace-insensitive)."""

    have = {_norm_header(h) for h in headers}
    return [m.column for m in mappings if _norm_header(m.column) not in have]


__all__ = [
    "CANONICAL_FIELDS",
    "ColumnMapping",
    "DEFAULT_COLUMN_MAPPINGS",
    "IGNORED_COLUMNS",
    "date_format_from",
    "map_row",
    "mappings_from_dict",
    "missing_columns",
]
