from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from pe_ledger.metrics import (
    calculate_all_metrics,
    default_residual,
    dpi,
    format_multiple,
    metrics_from_transactions,
    moic,
    rvpi,
    totals_from_transactions,
    tvpi,
)


def test_multiples_with_explicit_residual() -> None:
    assert moic(1000, 300, 900) == pytest.approx(1.2)
    assert dpi(1000, 300) == pytest.approx(0.3)
    assert rvpi(1000, 300, 900) == pytest.approx(0.9)
    assert tvpi(1000, 300, 900) == moic(1000, 300, 900)


def test_residual_defaults_to_unreturned_cost() -> None:
    assert default_residual(1000, 300) == 700.0
    assert default_residual(1000, 1500) == 0.0
    assert moic(1000, 300) == pytest.approx(1.0)
    assert rvpi(1000, 300) == pytest.approx(0.7)
    assert moic(1000, 1500) == pytest.approx(1.5)


def test_tvpi_is_dpi_plus_rvpi() -> None:
    for called, distributed, residual in [(1000, 300, 900), (250, 10, None), (3, 7, 0.5)]:
        assert tvpi(called, distributed, residual) == pytest.approx(
            dpi(called, distributed) + rvpi(called, distributed, residual)
        )


@pytest.mark.parametrize("called", [0, -5])
def test_nothing_called_means_no_multiples(called: int) -> None:
    assert moic(called, 100, 50) is None
    assert dpi(called, 100) is None
    assert rvpi(called, 100, 50) is None
    assert tvpi(called, 100, 50) is None


def test_decimal_inputs_are_accepted() -> None:
    assert dpi(Decimal("1000.00"), Decimal("250.00")) == pytest.approx(0.25)


def test_calculate_all_metrics_flags() -> None:
    estimated = calculate_all_metrics(1000, 300)
    assert estimated.residual_is_estimated
    assert estimated.residual_value == 700.0
    assert estimated.net_position == -700.0
    assert estimated.has_capital_calls and estimated.has_distributions
    assert not estimated.is_fully_realized

    realized = calculate_all_metrics(1000, 1200, 0, xirr_value=0.12)
    assert not realized.residual_is_estimated
    assert realized.is_fully_realized
    assert realized.xirr == 0.12
    assert realized.tvpi == realized.moic == pytest.approx(1.2)

    empty = calculate_all_metrics(0, 0)
    assert empty.moic is None
    assert not empty.has_capital_calls
    assert not empty.is_fully_realized


ROWS = [
    {"date": "2023-01-01", "category": "capital_call", "amount_normalized": -1000},
    {"date": "2023-06-01", "category": "deposit", "amount_normalized": -500},
    {"date": "2023-09-01", "category": "management_fee", "amount_normalized": -25},
    {"date": "2024-01-01", "category": "distribution", "amount_normalized": 400},
    {"date": "2024-02-01", "category": "income_distribution", "amount_normalized": 50},
    {"date": "2024-03-01", "category": "withdrawal", "amount_normalized": 50},
]


def test_totals_from_transactions_use_absolute_sums_by_category() -> None:
    assert totals_from_transactions(ROWS) == (1500.0, 500.0)


def test_metrics_from_transactions() -> None:
    m = metrics_from_transactions(ROWS, residual=1200, as_of=date(2024, 12, 31))
    assert (m.total_called, m.total_distributed, m.residual_value) == (1500.0, 500.0, 1200.0)
    assert m.moic == pytest.approx(1700 / 1500)
    assert m.dpi == pytest.approx(500 / 1500)
    assert m.xirr is not None and m.xirr > 0

    # At cost, a position that has returned less than it called loses money.
    at_cost = metrics_from_transactions(ROWS, as_of=date(2024, 12, 31))
    assert at_cost.residual_is_estimated
    assert at_cost.moic == pytest.approx(1.0)
    assert at_cost.xirr == pytest.approx(0.0, abs=1e-6)


@pytest.mark.parametrize(("value", "expected"), [(1.5, "1.50x"), (0.333, "0.33x"), (None, "N/A")])
def test_format_multiple(value, expected: str) -> None:
    assert format_multiple(value) == expected
