from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import Investment, LedgerTransaction
from pe_ledger.duplicates import check_batch
from pe_ledger.importer import import_batch
from pe_ledger.models import ImportOptions, ImportRecord
from pe_ledger.normalize import TransactionNormalizer
from pe_ledger.transaction_types import DEFAULT_TRANSACTION_TYPES
from tests.helpers.db import bootstrap_sqlite_db, count_transactions

NORMALIZER = TransactionNormalizer(DEFAULT_TRANSACTION_TYPES)


def _row(**overrides: Any) -> dict[str, Any]:
    row = {
        "date": "2024-01-15",
        "amount": "1000",
        "currency": "USD",
        "transaction_type": "Capital Call",
        "investment_name": "Fund A",
    }
    row.update(overrides)
    return row


def _records(session: Session, rows: Sequence[dict[str, Any]]) -> list[ImportRecord]:
    normalized = [NORMALIZER(r) for r in rows]
    dedups = check_batch(session, normalized, check_similarity=False)
    return [
        ImportRecord(index=i, normalized=tx, dedup=dd, source_row=row)
        for i, (row, tx, dd) in enumerate(zip(rows, normalized, dedups, strict=True))
    ]


def _import(url: str, rows: Sequence[dict[str, Any]], options: ImportOptions | None = None):
    with session_scope(database_url=url) as session:
        return import_batch(session, _records(session, rows), options)


def _count(url: str) -> int:
    with session_scope(database_url=url) as session:
        return count_transactions(session)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")


ROWS = [
    _row(),
    _row(date="2024-06-30", amount="250", transaction_type="Distribution"),
    _row(date="2024-03-01", amount="400", investment_name="Fund B"),
]


def test_import_writes_rows_and_returns_ids(db_url: str) -> None:
    summary = _import(db_url, ROWS, ImportOptions(source_file="export.csv"))

    assert (summary.total, summary.imported, summary.skipped, summary.failed) == (3, 3, 0, 0)
    assert len(summary.ids) == 3
    assert summary.errors == ()
    assert [o.status for o in summary.outcomes] == ["imported"] * 3

    with session_scope(database_url=db_url) as session:
        stmt = select(LedgerTransaction).order_by(LedgerTransaction.id)
        rows = session.execute(stmt).scalars().all()
        assert [str(r.amount_normalized) for r in rows] == ["-1000.00", "250.00", "-400.00"]
        assert rows[0].category == "capital_call"
        assert rows[0].fingerprint_sha256 is not None
        assert rows[0].source_file == "export.csv"
        assert rows[0].source_metadata["investment_name"] == "Fund A"

        stmt = select(Investment).order_by(Investment.identifier)
        investments = session.execute(stmt).scalars().all()
        assert [i.identifier for i in investments] == ["Fund A", "Fund B"]
        assert rows[0].investment_id == investments[0].id
        assert rows[1].investment_id == investments[0].id


def test_reimport_is_idempotent(db_url: str) -> None:
    first = _import(db_url, ROWS)
    second = _import(db_url, ROWS)

    assert first.imported == 3
    assert (second.imported, second.skipped, second.failed) == (0, 3, 0)
    assert {o.reason for o in second.outcomes} == {"duplicate"}
    assert sorted(o.duplicate_of for o in second.outcomes) == sorted(first.ids)
    assert _count(db_url) == 3


def test_overlapping_upload_imports_only_new_rows(db_url: str) -> None:
    _import(db_url, ROWS[:2])
    summary = _import(db_url, ROWS)
    assert (summary.imported, summary.skipped) == (1, 2)
    assert summary.outcomes[2].status == "imported"
    assert _count(db_url) == 3


def test_dry_run_predicts_real_run_and_writes_nothing(db_url: str) -> None:
    _import(db_url, ROWS[:1])
    batch = [
        *ROWS,
        _row(),  # repeat of an existing row
        _row(date="2024-09-01", amount="75"),
        _row(date="2024-09-01", amount="75"),  # repeat inside the batch
        _row(date="garbage"),
        _row(investment_name=""),
    ]

    dry = _import(db_url, batch, ImportOptions(dry_run=True))
    assert dry.dry_run
    assert dry.ids == ()
    assert _count(db_url) == 1

    real = _import(db_url, batch)
    assert (dry.imported, dry.skipped, dry.failed) == (real.imported, real.skipped, real.failed)
    assert [(o.status, o.reason) for o in dry.outcomes] == [
        (o.status, o.reason) for o in real.outcomes
    ]
    assert (real.imported, real.skipped, real.failed) == (3, 5, 0)


def test_in_batch_repeats_are_skipped(db_url: str) -> None:
    summary = _import(db_url, [_row(), _row()])
    assert [(o.status, o.reason) for o in summary.outcomes] == [
        ("imported", None),
        ("skipped", "duplicate_in_batch"),
    ]
    assert _count(db_url) == 1


def test_incomplete_rows_are_skipped_unless_forced(db_url: str) -> None:
    rows = [_row(date=None), _row(amount="n/a"), _row(investment_name=None)]
    summary = _import(db_url, rows)
    assert [o.reason for o in summary.outcomes] == [
        "missing_required_fields",
        "missing_required_fields",
        "needs_review",
    ]
    assert _count(db_url) == 0


def test_forced_import_failures_are_isolated_per_record(db_url: str) -> None:
    rows = [_row(), _row(date=None), _row(investment_name=None), _row(investment_name=None)]
    summary = _import(db_url, rows, ImportOptions(force_import=True))

    assert [o.status for o in summary.outcomes] == ["imported", "failed", "imported", "imported"]
    assert (summary.imported, summary.failed) == (3, 1)
    [error] = summary.errors
    assert error.index == 1
    assert error.error
    # Rows without a fingerprint can coexist; the failed row left nothing behind.
    assert _count(db_url) == 3


def test_forced_dry_run_predicts_failures(db_url: str) -> None:
    rows = [_row(), _row(date=None)]
    dry = _import(db_url, rows, ImportOptions(force_import=True, dry_run=True))
    real = _import(db_url, rows, ImportOptions(force_import=True))
    assert [o.status for o in dry.outcomes] == [o.status for o in real.outcomes] == [
        "imported",
        "failed",
    ]


def test_duplicates_reach_the_store_when_not_skipped(db_url: str) -> None:
    _import(db_url, ROWS[:1])
    summary = _import(db_url, ROWS[:1], ImportOptions(skip_duplicates=False))
    # The unique fingerprint index turns the insert into a no-op.
    assert [(o.status, o.reason) for o in summary.outcomes] == [("skipped", "duplicate")]
    assert _count(db_url) == 1


def test_dry_run_matches_real_run_when_duplicates_are_not_skipped(db_url: str) -> None:
    [existing] = _import(db_url, ROWS[:1]).ids
    options = ImportOptions(skip_duplicates=False)
    batch = [ROWS[0], ROWS[1]]

    dry = _import(db_url, batch, dataclasses.replace(options, dry_run=True))
    real = _import(db_url, batch, options)

    assert [(o.status, o.reason) for o in dry.outcomes] == [
        (o.status, o.reason) for o in real.outcomes
    ]
    assert (dry.imported, dry.skipped) == (real.imported, real.skipped) == (1, 1)
    assert dry.outcomes[0].duplicate_of == existing
    assert _count(db_url) == 2


def test_register_investments_can_be_disabled(db_url: str) -> None:
    _import(db_url, ROWS[:1], ImportOptions(register_investments=False))
    with session_scope(database_url=db_url) as session:
        assert session.execute(select(Investment)).first() is None
        row = session.execute(select(LedgerTransaction)).scalar_one()
        assert row.investment_id is None
        assert row.investment_identifier == "Fund A"
