from __future__ import annotations

import pytest

from pe_ledger.column_mapping import (
    DEFAULT_COLUMN_MAPPINGS,
    ColumnMapping,
    date_format_from,
    map_row,
    mappings_from_dict,
    missing_columns,
)


def test_map_row_projects_default_hebrew_headers() -> None:
    raw = {
        "תאריך התנועה": "15/01/2024",
        "סכום תנועה במטבע": "1,000",
        "מטבע התנועה": "$",
        "סוג תנועה": "הפקדה",
        "תאור": "Fund A",
        "גוף מנהל": "Manager Ltd",
        "מספר חשבון": "12345",
    }
    mapped = map_row(raw, DEFAULT_COLUMN_MAPPINGS)
    assert mapped == {
        "date": "15/01/2024",
        "amount": "1,000",
        "currency": "$",
        "transaction_type": "הפקדה",
        "investment_name": "Fund A",
        "counterparty": "Manager Ltd",
    }


def test_map_row_ignores_header_whitespace_differences() -> None:
    raw = {"  תאריך   התנועה ": "2024-01-15"}
    assert map_row(raw, DEFAULT_COLUMN_MAPPINGS) == {"date": "2024-01-15"}


def test_unknown_target_field_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown target field"):
        ColumnMapping("Amount", "amount_in_cents")


def test_mappings_from_dict_attaches_date_format_to_date_only() -> None:
    mappings = mappings_from_dict(
        {"Date": "date", "Amount": "amount", "Fund": "investment_name"},
        date_format="MM/DD/YYYY",
    )
    assert date_format_from(mappings) == "MM/DD/YYYY"
    assert [m.date_format for m in mappings] == ["MM/DD/YYYY", None, None]
    assert map_row({"Date": "01/02/2024", "Fund": "X"}, mappings) == {
        "date": "01/02/2024",
        "investment_name": "X",
    }


def test_missing_columns_reports_mapped_headers_absent_from_file() -> None:
    mappings = mappings_from_dict({"Date": "date", "Amount": "amount"})
    assert missing_columns(["Date", "Other"], mappings) == ["Amount"]
    assert missing_columns([" Date ", "Amount"], mappings) == []
