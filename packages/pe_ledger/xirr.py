"""XIRR/IRR by Newton-Raphson and ledger rows → cash-flow conversion.

Solves ``Σ a_i / (1 + r) ** (d_i / 365) = 0`` where ``d_i`` is the number of
days since the earliest flow. Degenerate input (fewer than two flows, all
flows of one sign) and numerical failure (vanishing derivative, a step
leaving ``(-0.99, 10)``, no convergence) return ``None`` instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from .logging_setup import get_logger
from .models import CALLED_CATEGORIES, DISTRIBUTED_CATEGORIES, CashFlow

logger = get_logger("pe_ledger.xirr")

RATE_FLOOR = -0.99
RATE_CEILING = 10.0
_MIN_DERIVATIVE = 1e-10


def _year_fractions(flows: Sequence[CashFlow]) -> list[float]:
    start = flows[0].date
    return [(cf.date - start).days / 365.0 for cf in flows]


def npv(rate: float, flows: Sequence[CashFlow]) -> float:
    """Net present value of ``flows`` at ``rate``, discounted to the earliest date."""

    ordered = sorted(flows, key=lambda cf: cf.date)
    if not ordered:
        return 0.0
    years = _year_fractions(ordered)
    return sum(cf.amount / (1.0 + rate) ** t for cf, t in zip(ordered, years, strict=True))


def _has_mixed_signs(amounts: Iterable[float]) -> bool:
    neg = pos = False
    for a in amounts:
        neg = neg or a < 0
        pos = pos or a > 0
    return neg and pos


def _newton(
    amounts: Sequence[float],
    years: Sequence[float],
    guess: float,
    max_iterations: int,
    tolerance: float,
) -> float | None:
    rate = guess
    for i in range(max_iterations):
        value = 0.0
        derivative = 0.0
        for a, t in zip(amounts, years, strict=True):
            base = (1.0 + rate) ** t
            value += a / base
            derivative -= t * a / (base * (1.0 + rate))
        if abs(value) < tolerance:
            return rate
        if abs(derivative) < _MIN_DERIVATIVE:
            logger.warning("xirr:derivative_vanished iteration=%d rate=%s", i, rate)
            return None
        new_rate = rate - value / derivative
        if not math.isfinite(new_rate) or not RATE_FLOOR < new_rate < RATE_CEILING:
            logger.warning("xirr:out_of_bounds iteration=%d rate=%s", i, new_rate)
            return None
        if abs(new_rate - rate) < tolerance * 1e-3:
            return new_rate
        rate = new_rate
    logger.warning("xirr:no_convergence iterations=%d", max_iterations)
    return None


def xirr(
    flows: Iterable[CashFlow],
    guess: float = 0.1,
    max_iterations: int = 100,
    tolerance: float = 1e-7,
) -> float | None:
    """Annualized internal rate of return for irregularly dated ``flows``.

    Parameters
    ----------
    flows:
        Cash flows in any order; negatives are money paid in, positives money
        received.
    guess:
        Starting rate for Newton-Raphson.
    max_iterations:
        Iteration cap before giving up.
    tolerance:
        Absolute NPV below which the rate counts as converged.

    Returns
    -------
    float | None
        Rate as a decimal fraction (``0.1`` is 10%), or ``None``.

    Examples
    --------
    >>> round(xirr([CashFlow(date(2023, 1, 1), -1000.0), CashFlow(date(2024, 1, 1), 1100.0)]), 6)
    0.1
    """

    ordered = sorted(flows, key=lambda cf: cf.date)
    if len(ordered) < 2:
        return None
    amounts = [float(cf.amount) for cf in ordered]
    if not _has_mixed_signs(amounts):
        return None
    return _newton(amounts, _year_fractions(ordered), guess, max_iterations, tolerance)


def irr(
    amounts: Sequence[float],
    guess: float = 0.1,
    max_iterations: int = 100,
    tolerance: float = 1e-7,
) -> float | None:
    """IRR for evenly spaced (one period apart) cash flows."""

    values = [float(a) for a in amounts]
    if len(values) < 2 or not _has_mixed_signs(values):
        return None
    return _newton(values, [float(i) for i in range(len(values))], guess, max_iterations, tolerance)


def row_field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None


def transactions_to_cash_flows(
    rows: Iterable[Any],
    *,
    amount_field: str = "amount_normalized",
    as_of: date | None = None,
    residual_value: float | Decimal | None = None,
    include_current_position: bool = True,
) -> list[CashFlow]:
    """Convert ledger rows into an ordered cash-flow series.

    Rows are mappings or objects with ``date``, ``category`` (or
    ``transaction_category``) and the ``amount_field`` attribute. Called
    capital becomes ``-|amount|`` and distributions ``+|amount|``; fees,
    unrealized changes and uncategorized rows are ignored, as are rows with a
    missing date or amount.

    With ``include_current_position`` a terminal flow dated ``as_of`` (today
    by default) is appended: the explicit ``residual_value`` when given and
    positive, otherwise the outstanding cost ``|net|`` when the net position
    is negative.
    """

    flows: list[CashFlow] = []
    net = 0.0
    for row in rows:
        category = row_field(row, "category") or row_field(row, "transaction_category")
        on = _as_date(row_field(row, "date"))
        raw = row_field(row, amount_field)
        if on is None or raw is None or category is None:
            continue
        if category in CALLED_CATEGORIES:
            amount = -abs(float(raw))
        elif category in DISTRIBUTED_CATEGORIES:
            amount = abs(float(raw))
        else:
            continue
        flows.append(CashFlow(on, amount))
        net += amount

    flows.sort(key=lambda cf: cf.date)
    if include_current_position:
        terminal_date = as_of or date.today()
        if residual_value is not None:
            if float(residual_value) > 0:
                flows.append(CashFlow(terminal_date, float(residual_value)))
        elif net < 0:
            flows.append(CashFlow(terminal_date, abs(net)))
    return flows


def format_rate(value: float | None) -> str:
    """``0.1234`` → ``"12.34%"``; ``None`` → ``"N/A"``."""

    if value is None:
        return "N/A"
    return f"{value * 100:.2f}%"


__all__ = [
    "RATE_CEILING",
    "RATE_FLOOR",
    "format_rate",
    "irr",
    "npv",
    "row_field",
    "transactions_to_cash_flows",
    "xirr",
]
