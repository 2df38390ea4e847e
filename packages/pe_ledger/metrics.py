"""Private-investment return multiples.

- MOIC = (distributions + residual) / called
- DPI  = distributions / called
- RVPI = residual / called
- TVPI = DPI + RVPI, returned as the MOIC value so the identity is exact

Every multiple is ``None`` when ``called <= 0``. When no residual is supplied
it defaults to ``max(0, called - distributions)``: unreturned capital is
assumed to still be worth cost. :func:`calculate_all_metrics` reports which
of the two residuals was used.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any

from .models import CALLED_CATEGORIES, DISTRIBUTED_CATEGORIES, InvestmentMetrics
from .xirr import row_field, transactions_to_cash_flows, xirr

type Number = float | int | Decimal


def default_residual(called: Number, distributed: Number) -> float:
    return max(0.0, float(called) - float(distributed))


def _resolve_residual(called: Number, distributed: Number, residual: Number | None) -> float:
    return default_residual(called, distributed) if residual is None else float(residual)


def moic(called: Number, distributed: Number, residual: Number | None = None) -> float | None:
    c = float(called)
    if c <= 0:
        return None
    return (float(distributed) + _resolve_residual(called, distributed, residual)) / c


def dpi(called: Number, distributed: Number) -> float | None:
    c = float(called)
    if c <= 0:
        return None
    return float(distributed) / c


def rvpi(called: Number, distributed: Number, residual: Number | None = None) -> float | None:
    c = float(called)
    if c <= 0:
        return None
    return _resolve_residual(called, distributed, residual) / c


def tvpi(called: Number, distributed: Number, residual: Number | None = None) -> float | None:
    # DPI + RVPI; computed through MOIC so tvpi == moic holds bit-for-bit.
    return moic(called, distributed, residual)


def calculate_all_metrics(
    called: Number,
    distributed: Number,
    residual: Number | None = None,
    *,
    xirr_value: float | None = None,
) -> InvestmentMetrics:
    """Bundle totals, multiples and flags for one position."""

    c, d = float(called), float(distributed)
    resolved = _resolve_residual(c, d, residual)
    return InvestmentMetrics(
        total_called=c,
        total_distributed=d,
        residual_value=resolved,
        residual_is_estimated=residual is None,
        net_position=d - c,
        moic=moic(c, d, residual),
        dpi=dpi(c, d),
        rvpi=rvpi(c, d, residual),
        tvpi=tvpi(c, d, residual),
        xirr=xirr_value,
        has_distributions=d > 0,
        has_capital_calls=c > 0,
        is_fully_realized=c > 0 and d >= c,
    )


def totals_from_transactions(
    rows: Iterable[Any], *, amount_field: str = "amount_normalized"
) -> tuple[float, float]:
    """Return ``(called, distributed)`` as absolute sums over categorized rows."""

    called = distributed = 0.0
    for row in rows:
        category = row_field(row, "category") or row_field(row, "transaction_category")
        raw = row_field(row, amount_field)
        if raw is None or category is None:
            continue
        if category in CALLED_CATEGORIES:
            called += abs(float(raw))
        elif category in DISTRIBUTED_CATEGORIES:
            distributed += abs(float(raw))
    return called, distributed


def metrics_from_transactions(
    rows: Iterable[Any],
    *,
    residual: Number | None = None,
    as_of: date | None = None,
    amount_field: str = "amount_normalized",
) -> InvestmentMetrics:
    """Totals, multiples and XIRR for a set of ledger rows.

    The XIRR series ends with the same residual the multiples use: the
    explicit one when supplied, else the outstanding cost.
    """

    items = list(rows)
    called, distributed = totals_from_transactions(items, amount_field=amount_field)
    flows = transactions_to_cash_flows(
        items, amount_field=amount_field, as_of=as_of, residual_value=residual
    )
    return calculate_all_metrics(called, distributed, residual, xirr_value=xirr(flows))


def format_multiple(value: float | None) -> str:
    """``1.5`` → ``"1.50x"``; ``None`` → ``"N/A"``."""

    if value is None:
        return "N/A"
    return f"{value:.2f}x"


__all__ = [
    "calculate_all_metrics",
    "default_residual",
    "dpi",
    "format_multiple",
    "metrics_from_transactions",
    "moic",
    "rvpi",
    "totals_from_transactions",
    "tvpi",
]
