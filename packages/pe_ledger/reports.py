"""Per-investment and portfolio return reports read from the ledger.

Rows are read on demand; nothing is cached. The default ``"usd"`` basis
aggregates ``amount_usd`` and leaves out rows whose conversion failed
(counted in ``excluded_rows``). The ``"original"`` basis uses
``amount_normalized`` as-is and is only meaningful for single-currency
investments.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.ledger import Investment, LedgerTransaction

from .logging_setup import get_logger
from .metrics import calculate_all_metrics, metrics_from_transactions
from .models import InvestmentMetrics
from .xirr import transactions_to_cash_flows, xirr

logger = get_logger("pe_ledger.reports")

Basis = Literal["usd", "original"]
_AMOUNT_FIELD: Mapping[str, str] = {"usd": "amount_usd", "original": "amount_normalized"}


@dataclass(frozen=True, slots=True)
class InvestmentReport:
    identifier: str
    name: str | None
    transaction_count: int
    first_date: date | None
    last_date: date | None
    metrics: InvestmentMetrics


@dataclass(frozen=True, slots=True)
class PortfolioReport:
    investments: tuple[InvestmentReport, ...]
    total: InvestmentMetrics


def _amount_field(basis: str) -> str:
    try:
        return _AMOUNT_FIELD[basis]
    except KeyError:
        raise ValueError(f"unknown basis {basis!r}; expected 'usd' or 'original'") from None


def _build_report(
    identifier: str,
    name: str | None,
    rows: Sequence[LedgerTransaction],
    *,
    amount_field: str,
    residual: float | None,
    as_of: date | None,
) -> InvestmentReport:
    usable = [r for r in rows if getattr(r, amount_field) is not None]
    metrics = metrics_from_transactions(
        usable, residual=residual, as_of=as_of, amount_field=amount_field
    )
    metrics = dataclasses.replace(metrics, excluded_rows=len(rows) - len(usable))
    dates = [r.date for r in rows]
    return InvestmentReport(
        identifier=identifier,
        name=name,
        transaction_count=len(rows),
        first_date=min(dates) if dates else None,
        last_date=max(dates) if dates else None,
        metrics=metrics,
    )


def _names(session: Session, identifiers: Sequence[str]) -> dict[str, str]:
    if not identifiers:
        return {}
    rows = session.execute(
        select(Investment.identifier, Investment.name).where(
            Investment.identifier.in_(list(identifiers))
        )
    )
    return {ident: name for ident, name in rows}


def investment_report(
    session: Session,
    identifier: str,
    *,
    residual_value: float | None = None,
    as_of: date | None = None,
    basis: Basis = "usd",
) -> InvestmentReport:
    """Report for one investment identifier (an empty ledger yields zero totals)."""

    field = _amount_field(basis)
    rows = list(
        session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.investment_identifier == identifier)
            .order_by(LedgerTransaction.date, LedgerTransaction.id)
        ).scalars()
    )
    name = _names(session, [identifier]).get(identifier)
    return _build_report(
        identifier, name, rows, amount_field=field, residual=residual_value, as_of=as_of
    )


def portfolio_report(
    session: Session,
    *,
    residuals: Mapping[str, float] | None = None,
    as_of: date | None = None,
    basis: Basis = "usd",
) -> PortfolioReport:
    """Per-investment reports plus a combined portfolio line.

    Portfolio residual is the sum of the per-investment residuals (explicit
    where given in ``residuals``, cost-basis default elsewhere); portfolio
    XIRR runs over the union of every investment's flows, terminal values
    included. Rows without an investment identifier are counted as excluded.
    """

    field = _amount_field(basis)
    explicit = dict(residuals or {})
    grouped: dict[str, list[LedgerTransaction]] = defaultdict(list)
    orphans = 0
    for row in session.execute(
        select(LedgerTransaction).order_by(LedgerTransaction.date, LedgerTransaction.id)
    ).scalars():
        if row.investment_identifier is None:
            orphans += 1
        else:
            grouped[row.investment_identifier].append(row)

    names = _names(session, sorted(grouped))
    reports: list[InvestmentReport] = []
    flows = []
    for ident in sorted(grouped):
        rows = grouped[ident]
        report = _build_report(
            ident,
            names.get(ident),
            rows,
            amount_field=field,
            residual=explicit.get(ident),
            as_of=as_of,
        )
        reports.append(report)
        usable = [r for r in rows if getattr(r, field) is not None]
        flows.extend(
            transactions_to_cash_flows(
                usable, amount_field=field, as_of=as_of, residual_value=explicit.get(ident)
            )
        )

    called = sum(r.metrics.total_called for r in reports)
    distributed = sum(r.metrics.total_distributed for r in reports)
    residual = sum(r.metrics.residual_value for r in reports)
    total = calculate_all_metrics(called, distributed, residual, xirr_value=xirr(flows))
    total = dataclasses.replace(
        total,
        residual_is_estimated=any(r.metrics.residual_is_estimated for r in reports),
        excluded_rows=orphans + sum(r.metrics.excluded_rows for r in reports),
    )
    logger.info(
        "reports:portfolio investments=%d called=%.2f distributed=%.2f excluded=%d",
        len(reports),
        called,
        distributed,
        total.excluded_rows,
    )
    return PortfolioReport(investments=tuple(reports), total=total)


__all__ = [
    "Basis",
    "InvestmentReport",
    "PortfolioReport",
    "investment_report",
    "portfolio_report",
]
