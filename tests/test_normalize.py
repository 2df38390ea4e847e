from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from pe_ledger.models import DirectionalityRule
from pe_ledger.normalize import TransactionNormalizer, apply_directionality, normalize
from pe_ledger.transaction_types import DEFAULT_TRANSACTION_TYPES


class _DictRates:
    """Rate lookup keyed by ``(date_iso, from, to)``; records every request."""

    def __init__(self, rates: dict[tuple[str, str, str], Decimal]) -> None:
        self._rates = rates
        self.requests: list[tuple[Any, str, str]] = []

    def rate(self, on: Any, from_currency: str, to_currency: str) -> Decimal | None:
        self.requests.append((on, from_currency, to_currency))
        if from_currency == to_currency:
            return Decimal(1)
        return self._rates.get((on, from_currency, to_currency))


def _row(**overrides: Any) -> dict[str, Any]:
    row = {
        "date": "15/01/2024",
        "amount": "1,000",
        "currency": "USD",
        "transaction_type": "הפקדה",
        "investment_name": "Fund A",
        "counterparty": "Manager Ltd",
    }
    row.update(overrides)
    return row


def _fields(tx) -> list[str]:
    return [i.field for i in tx.issues]


# ---- Directionality ----------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "rule", "expected"),
    [
        (Decimal("100"), DirectionalityRule.ALWAYS_NEGATIVE, (Decimal("-100"), -1)),
        (Decimal("-100"), DirectionalityRule.ALWAYS_NEGATIVE, (Decimal("-100"), -1)),
        (Decimal("-100"), DirectionalityRule.ALWAYS_POSITIVE, (Decimal("100"), 1)),
        (Decimal("100"), DirectionalityRule.ALWAYS_POSITIVE, (Decimal("100"), 1)),
        (Decimal("-100"), DirectionalityRule.AS_IS, (Decimal("-100"), -1)),
        (Decimal("100"), DirectionalityRule.AS_IS, (Decimal("100"), 1)),
        (Decimal("0"), DirectionalityRule.AS_IS, (Decimal("0"), None)),
    ],
)
def test_apply_directionality(amount: Decimal, rule: DirectionalityRule, expected) -> None:
    assert apply_directionality(amount, rule) == expected


def test_normalized_sign_depends_only_on_rule_and_source_sign() -> None:
    for raw in ("1,000", "-1,000", "(1,000)"):
        tx = normalize(_row(amount=raw), DEFAULT_TRANSACTION_TYPES)
        assert tx.amount_normalized == Decimal("-1000")
        assert tx.cash_flow_direction == -1


# ---- Full rows ---------------------------------------------------------------


def test_deposit_row_normalizes_cleanly() -> None:
    tx = normalize(_row(), DEFAULT_TRANSACTION_TYPES)

    assert tx.date_iso == "2024-01-15"
    assert tx.amount_original == Decimal("1000")
    assert tx.amount_normalized == Decimal("-1000")
    assert tx.transaction_category == "deposit"
    assert tx.cash_flow_direction == -1
    assert tx.original_currency == "USD"
    assert tx.amount_usd == Decimal("-1000.00")
    assert tx.investment_identifier == "Fund A"
    assert tx.transaction_type_raw == "הפקדה"
    assert tx.issues == ()


def test_distribution_is_forced_positive() -> None:
    tx = normalize(
        _row(transaction_type="Distribution", amount="-2,500.50"), DEFAULT_TRANSACTION_TYPES
    )
    assert tx.amount_original == Decimal("-2500.50")
    assert tx.amount_normalized == Decimal("2500.50")
    assert tx.cash_flow_direction == 1
    assert tx.transaction_category == "distribution"


def test_foreign_currency_converts_through_rate_lookup() -> None:
    rates = _DictRates({("2024-01-15", "ILS", "USD"): Decimal("0.2712")})
    tx = normalize(_row(currency='ש"ח'), DEFAULT_TRANSACTION_TYPES, rates=rates)

    assert tx.original_currency == "ILS"
    assert tx.amount_usd == Decimal("-271.20")
    assert rates.requests == [("2024-01-15", "ILS", "USD")]
    assert tx.issues == ()


def test_missing_rate_leaves_usd_empty_with_warning() -> None:
    tx = normalize(_row(currency="ILS"), DEFAULT_TRANSACTION_TYPES, rates=_DictRates({}))
    assert tx.amount_usd is None
    assert tx.amount_normalized == Decimal("-1000")
    [issue] = tx.issues
    assert (issue.field, issue.severity) == ("amount_usd", "warning")


def test_usd_converts_at_one_without_rate_lookup() -> None:
    tx = normalize(_row(amount="250"), DEFAULT_TRANSACTION_TYPES)
    assert tx.amount_usd == Decimal("-250.00")


def test_missing_currency_is_a_warning() -> None:
    tx = normalize(_row(currency=""), DEFAULT_TRANSACTION_TYPES)
    assert tx.original_currency is None
    assert tx.amount_usd is None
    assert _fields(tx) == ["amount_usd"]


def test_bad_date_is_an_error_and_skips_conversion() -> None:
    rates = _DictRates({})
    tx = normalize(_row(date="31/02/2024", currency="ILS"), DEFAULT_TRANSACTION_TYPES, rates=rates)

    assert tx.date_iso is None
    assert tx.has_errors
    assert _fields(tx) == ["date"]
    assert tx.issues[0].message == "unparseable date"
    assert rates.requests == []


def test_missing_amount_is_an_error() -> None:
    tx = normalize(_row(amount=None), DEFAULT_TRANSACTION_TYPES)
    assert tx.amount_original is None
    assert tx.amount_normalized is None
    assert tx.amount_usd is None
    assert [(i.field, i.severity, i.message) for i in tx.issues] == [
        ("amount", "error", "missing amount")
    ]


def test_unknown_transaction_type_keeps_raw_sign() -> None:
    tx = normalize(_row(transaction_type="Something new", amount="-75"), DEFAULT_TRANSACTION_TYPES)
    assert tx.transaction_category is None
    assert tx.cash_flow_direction is None
    assert tx.amount_normalized == Decimal("-75")
    assert _fields(tx) == ["transaction_type"]
    assert not tx.has_errors


def test_missing_investment_name_is_a_warning() -> None:
    tx = normalize(_row(investment_name="   "), DEFAULT_TRANSACTION_TYPES)
    assert tx.investment_identifier is None
    assert _fields(tx) == ["investment"]


def test_counterparty_aliases_and_warehoused_ils_fields() -> None:
    tx = normalize(
        _row(counterparty="Mgr", amount_ils="3,650.00", exchange_rate_to_ils="3.65"),
        DEFAULT_TRANSACTION_TYPES,
        counterparty_aliases={"Mgr": "Manager Ltd"},
    )
    assert tx.counterparty == "Manager Ltd"
    assert tx.amount_ils == Decimal("3650.00")
    assert tx.exchange_rate_to_ils == Decimal("3.65")


def test_normalizer_bundle_matches_function() -> None:
    normalizer = TransactionNormalizer(DEFAULT_TRANSACTION_TYPES, date_format="MM/DD/YYYY")
    row = _row(date="01/02/2024")
    assert normalizer(row) == normalize(row, DEFAULT_TRANSACTION_TYPES, "MM/DD/YYYY")
    assert normalizer(row).date_iso == "2024-01-02"
