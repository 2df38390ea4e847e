from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from db.client import session_scope
from pe_ledger.commitments import (
    called_to_date,
    commitment_status,
    commitment_statuses,
    mark_commitment_complete,
    open_commitments_summary,
    set_commitment,
)
from pe_ledger.persistence import ensure_investment
from pe_ledger.rates import SqlRateStore
from tests.helpers.db import bootstrap_sqlite_db, seed_transaction

AS_OF = date(2024, 12, 31)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")


def test_new_commitment_starts_fully_open(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        status = set_commitment(session, "Fund A", "5,000", "$", commitment_date="2024-01-01")

    assert status.identifier == "Fund A"
    assert (status.initial_commitment, status.committed_currency) == (Decimal("5000"), "USD")
    assert status.commitment_date == date(2024, 1, 1)
    assert (status.called_to_date, status.remaining) == (Decimal("0"), Decimal("5000"))
    assert status.completion_pct == Decimal("0")
    assert not status.is_complete
    assert status.usd_rate == Decimal(1)


def test_called_to_date_counts_calls_and_deposits_in_committed_currency(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        seed_transaction(session, on="2024-01-15", amount="1000", identifier="Fund A")
        seed_transaction(
            session, on="2024-02-15", amount="-500", identifier="Fund A", category="deposit"
        )
        seed_transaction(
            session, on="2024-06-30", amount="300", identifier="Fund A", category="distribution"
        )
        seed_transaction(
            session, on="2024-03-01", amount="200", identifier="Fund A", currency="ILS"
        )
        seed_transaction(session, on="2024-03-01", amount="100", identifier="Fund B")

        assert called_to_date(session, "Fund A", "USD") == Decimal("1500")
        assert called_to_date(session, "Fund A", "ILS") == Decimal("200")
        assert called_to_date(session, "Fund C", "USD") == Decimal("0")

        set_commitment(session, "Fund A", 5000, "USD")
        status = commitment_status(session, "Fund A", as_of=AS_OF)

    assert status is not None
    assert (status.called_to_date, status.remaining) == (Decimal("1500"), Decimal("3500"))
    assert status.completion_pct == Decimal("30.0")
    assert not status.is_complete


def test_overcalled_commitment_is_complete_with_nothing_remaining(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        seed_transaction(session, on="2024-01-15", amount="1200", identifier="Fund A")
        status = set_commitment(session, "Fund A", "1000", "USD")

    assert status.remaining == Decimal("0")
    assert status.is_complete
    assert status.completion_pct == Decimal("120.0")


def test_manual_completion_flag(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        set_commitment(session, "Fund A", "1000", "USD")
        mark_commitment_complete(session, "Fund A")
        assert commitment_status(session, "Fund A").is_complete

        mark_commitment_complete(session, "Fund A", complete=False)
        assert not commitment_status(session, "Fund A").is_complete

        with pytest.raises(ValueError):
            mark_commitment_complete(session, "Nope")


def test_investments_without_commitment_have_no_status(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        ensure_investment(session, "Fund A")
        assert commitment_status(session, "Fund A") is None
        assert commitment_status(session, "Nope") is None
        assert commitment_statuses(session) == []


def test_usd_values_use_latest_stored_rate_up_to_valuation_date(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        store = SqlRateStore(session)
        store.upsert(date(2024, 1, 1), "ILS", "USD", Decimal("0.27"), "api")
        store.upsert(date(2024, 6, 1), "ILS", "USD", Decimal("0.28"), "manual")
        store.upsert(date(2025, 1, 1), "ILS", "USD", Decimal("0.30"), "api")
        seed_transaction(
            session, on="2024-02-01", amount="2500", identifier="Fund I", currency="ILS"
        )
        set_commitment(session, "Fund I", "10,000", "₪")

        status = commitment_status(session, "Fund I", as_of=AS_OF)
        early = commitment_status(session, "Fund I", as_of=date(2023, 12, 31))

    assert status is not None
    assert (status.usd_rate, status.usd_rate_date) == (Decimal("0.28"), date(2024, 6, 1))
    assert status.initial_commitment_usd == Decimal("2800.00")
    assert status.called_to_date_usd == Decimal("700.00")
    assert status.remaining_usd == Decimal("2100.00")

    assert early is not None
    assert early.usd_rate is None
    assert early.remaining_usd is None


def test_open_commitments_summary(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        SqlRateStore(session).upsert(date(2024, 6, 1), "ILS", "USD", Decimal("0.28"), "api")

        seed_transaction(session, on="2024-01-15", amount="1500", identifier="Fund USD")
        set_commitment(session, "Fund USD", "5000", "USD")

        seed_transaction(
            session, on="2024-02-01", amount="2500", identifier="Fund ILS", currency="ILS"
        )
        set_commitment(session, "Fund ILS", "10000", "ILS")

        set_commitment(session, "Fund EUR", "1000", "EUR")

        seed_transaction(session, on="2024-01-15", amount="1000", identifier="Fund Done")
        set_commitment(session, "Fund Done", "1000", "USD")

        set_commitment(session, "Fund Closed", "1000", "USD")
        mark_commitment_complete(session, "Fund Closed")

        summary = open_commitments_summary(session, as_of=AS_OF)

    assert summary.count == 3
    assert [g.currency for g in summary.currencies] == ["EUR", "ILS", "USD"]
    ils = summary.currencies[1]
    assert (ils.committed, ils.called, ils.remaining) == (
        Decimal("10000"),
        Decimal("2500"),
        Decimal("7500"),
    )
    assert summary.unconverted == ("EUR",)
    assert summary.total_committed_usd == Decimal("7800.00")
    assert summary.total_called_usd == Decimal("2200.00")
    assert summary.total_remaining_usd == Decimal("5600.00")


@pytest.mark.parametrize(
    ("identifier", "amount", "currency", "on"),
    [
        ("Fund A", "0", "USD", None),
        ("Fund A", "-5", "USD", None),
        ("Fund A", "abc", "USD", None),
        ("Fund A", "100", " ", None),
        ("  ", "100", "USD", None),
        ("Fund A", "100", "USD", "2024-13-01"),
    ],
)
def test_set_commitment_validation(
    db_url: str, identifier: str, amount: str, currency: str, on: str | None
) -> None:
    with session_scope(database_url=db_url) as session:
        with pytest.raises(ValueError):
            set_commitment(session, identifier, amount, currency, commitment_date=on)
