from __future__ import annotations

import csv
import io

import pytest

from pe_ledger.column_mapping import DEFAULT_COLUMN_MAPPINGS, mappings_from_dict
from pe_ledger.ingest.csv_rows import read_csv_rows, required_columns

HEADER = "תאור,תאריך התנועה,סכום תנועה במטבע,מטבע התנועה,סוג תנועה"


def _read(text: str, **kwargs):
    return read_csv_rows(io.StringIO(text), **kwargs)


def test_required_columns_are_the_transaction_import_ones() -> None:
    assert required_columns(DEFAULT_COLUMN_MAPPINGS) == [
        "תאריך התנועה",
        "סכום תנועה במטבע",
        "מטבע התנועה",
        "סוג תנועה",
    ]


def test_header_is_found_below_a_preamble() -> None:
    text = "\n".join(
        [
            "Movements report",
            "Generated 01/07/2024",
            HEADER,
            "Fund A,15/01/2024,1000,USD,הפקדה",
            ",,,,",
            "",
            "Fund B,16/01/2024,500,USD,הפקדה",
        ]
    )
    rows = _read(text)

    assert [n for n, _ in rows] == [4, 7]
    _, first = rows[0]
    assert first["תאור"] == "Fund A"
    assert first["סכום תנועה במטבע"] == "1000"


def test_header_on_first_line_with_bom_and_padding() -> None:
    text = "\ufeff" + HEADER.replace("סוג תנועה", " סוג  תנועה ") + "\nFund A,2024-01-15,1,USD,x\n"
    [(number, row)] = _read(text)
    assert number == 2
    assert row["סוג תנועה"] == "x"


def test_short_rows_are_padded_with_empty_strings() -> None:
    [(_, row)] = _read(HEADER + "\nFund A,2024-01-15\n")
    assert row["מטבע התנועה"] == ""


def test_custom_mappings_drive_header_detection() -> None:
    mappings = mappings_from_dict({"Date": "date", "Amount": "amount"})
    rows = _read("title\nDate,Amount,Notes\n2024-01-15,10,hi\n", mappings=mappings)
    assert rows == [(3, {"Date": "2024-01-15", "Amount": "10", "Notes": "hi"})]


def test_missing_header_names_the_missing_columns() -> None:
    text = "תאור,תאריך התנועה,סכום תנועה במטבע\nFund A,2024-01-15,1\n"
    with pytest.raises(csv.Error, match="מטבע התנועה"):
        _read(text)


def test_header_beyond_scan_window_is_not_found() -> None:
    text = "\n".join(["preamble"] * 5 + [HEADER, "Fund A,2024-01-15,1,USD,x"])
    with pytest.raises(csv.Error):
        _read(text, max_scan=3)
    assert len(_read(text, max_scan=10)) == 1
