"""Commitment tracking per investment.

An investment may carry commitment terms: the ``initial_commitment`` signed
for, the ``committed_currency`` capital is called in and an optional
``commitment_date``. Called-to-date is read from the ledger on demand as the
sum of absolute ``amount_original`` over capital-call and deposit rows in the
committed currency; rows in any other currency do not count against the
commitment. ``remaining = max(0, commitment - called)``.

A commitment is complete when it was marked complete by hand or when
called-to-date has reached the commitment.

USD figures use the stored ``currency → USD`` rate for the valuation date,
falling back to the latest stored rate before it. No provider is contacted;
when no rate is stored the USD fields are ``None`` and the commitment is
left out of the USD totals of :func:`open_commitments_summary`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.ledger import ExchangeRate, Investment, LedgerTransaction

from .logging_setup import get_logger
from .models import CALLED_CATEGORIES
from .parsers import currency_to_code, parse_amount
from .persistence import ensure_investment

logger = get_logger("pe_ledger.commitments")

CENT = Decimal("0.01")
_TENTH = Decimal("0.1")
_ZERO = Decimal(0)


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CommitmentStatus:
    identifier: str
    name: str
    initial_commitment: Decimal
    committed_currency: str
    commitment_date: date | None
    called_to_date: Decimal
    remaining: Decimal
    is_complete: bool
    completion_pct: Decimal
    usd_rate: Decimal | None = None
    usd_rate_date: date | None = None

    def _usd(self, amount: Decimal) -> Decimal | None:
        return None if self.usd_rate is None else _money(amount * self.usd_rate)

    @property
    def initial_commitment_usd(self) -> Decimal | None:
        return self._usd(self.initial_commitment)

    @property
    def called_to_date_usd(self) -> Decimal | None:
        return self._usd(self.called_to_date)

    @property
    def remaining_usd(self) -> Decimal | None:
        return self._usd(self.remaining)


@dataclass(frozen=True, slots=True)
class CurrencyCommitments:
    currency: str
    count: int
    committed: Decimal
    called: Decimal
    remaining: Decimal
    usd_rate: Decimal | None
    usd_rate_date: date | None


@dataclass(frozen=True, slots=True)
class OpenCommitmentsSummary:
    count: int
    total_committed_usd: Decimal
    total_called_usd: Decimal
    total_remaining_usd: Decimal
    currencies: tuple[CurrencyCommitments, ...]
    # Currencies without a stored USD rate; excluded from the USD totals.
    unconverted: tuple[str, ...]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def called_to_date(session: Session, identifier: str, currency: str) -> Decimal:
    """Capital called so far for ``identifier`` in ``currency`` (always >= 0)."""

    total = session.execute(
        select(func.sum(func.abs(LedgerTransaction.amount_original))).where(
            LedgerTransaction.investment_identifier == identifier,
            LedgerTransaction.category.in_(sorted(str(c) for c in CALLED_CATEGORIES)),
            LedgerTransaction.original_currency == currency,
        )
    ).scalar_one()
    return _money(total)


def usd_rate_on_or_before(
    session: Session, currency: str, on: date
) -> tuple[Decimal, date] | None:
    """Latest stored ``currency → USD`` rate dated ``on`` or earlier."""

    if currency == "USD":
        return Decimal(1), on
    row = session.execute(
        select(ExchangeRate.rate, ExchangeRate.date)
        .where(
            ExchangeRate.from_currency == currency,
            ExchangeRate.to_currency == "USD",
            ExchangeRate.date <= on,
        )
        .order_by(ExchangeRate.date.desc())
        .limit(1)
    ).first()
    if row is None:
        return None
    return Decimal(str(row.rate)), row.date


def _status(session: Session, inv: Investment, as_of: date) -> CommitmentStatus:
    commitment = _money(inv.initial_commitment)
    currency = inv.committed_currency or "USD"
    called = called_to_date(session, inv.identifier, currency)
    rate = usd_rate_on_or_before(session, currency, as_of)
    if rate is None:
        logger.warning(
            "commitments:no_usd_rate investment=%s currency=%s as_of=%s",
            inv.identifier,
            currency,
            as_of,
        )
    pct = (called / commitment * 100).quantize(_TENTH, rounding=ROUND_HALF_UP)
    return CommitmentStatus(
        identifier=inv.identifier,
        name=inv.name,
        initial_commitment=commitment,
        committed_currency=currency,
        commitment_date=inv.commitment_date,
        called_to_date=called,
        remaining=max(_ZERO, commitment - called),
        is_complete=bool(inv.is_complete) or called >= commitment,
        completion_pct=pct,
        usd_rate=rate[0] if rate else None,
        usd_rate_date=rate[1] if rate else None,
    )


def _committed_investments():
    return select(Investment).where(
        Investment.initial_commitment.is_not(None),
        Investment.committed_currency.is_not(None),
    )


def commitment_status(
    session: Session, identifier: str, *, as_of: date | None = None
) -> CommitmentStatus | None:
    """Status for one investment, or ``None`` when it has no commitment."""

    inv = session.execute(
        _committed_investments().where(Investment.identifier == identifier)
    ).scalar_one_or_none()
    if inv is None:
        return None
    return _status(session, inv, as_of or date.today())


def commitment_statuses(
    session: Session, *, as_of: date | None = None
) -> list[CommitmentStatus]:
    """Status of every investment with a commitment, ordered by name."""

    on = as_of or date.today()
    investments = session.execute(
        _committed_investments().order_by(Investment.name, Investment.identifier)
    ).scalars()
    return [_status(session, inv, on) for inv in investments]


def open_commitments_summary(
    session: Session, *, as_of: date | None = None
) -> OpenCommitmentsSummary:
    """Totals over commitments that are not complete and still have capital to call."""

    open_ = [
        s
        for s in commitment_statuses(session, as_of=as_of)
        if not s.is_complete and s.remaining > 0
    ]
    by_currency: dict[str, list[CommitmentStatus]] = {}
    for s in open_:
        by_currency.setdefault(s.committed_currency, []).append(s)

    groups: list[CurrencyCommitments] = []
    committed_usd = called_usd = remaining_usd = _ZERO
    unconverted: list[str] = []
    for currency in sorted(by_currency):
        items = by_currency[currency]
        group = CurrencyCommitments(
            currency=currency,
            count=len(items),
            committed=sum((s.initial_commitment for s in items), _ZERO),
            called=sum((s.called_to_date for s in items), _ZERO),
            remaining=sum((s.remaining for s in items), _ZERO),
            usd_rate=items[0].usd_rate,
            usd_rate_date=items[0].usd_rate_date,
        )
        groups.append(group)
        if group.usd_rate is None:
            unconverted.append(currency)
            continue
        committed_usd += _money(group.committed * group.usd_rate)
        called_usd += _money(group.called * group.usd_rate)
        remaining_usd += _money(group.remaining * group.usd_rate)

    return OpenCommitmentsSummary(
        count=len(open_),
        total_committed_usd=committed_usd,
        total_called_usd=called_usd,
        total_remaining_usd=remaining_usd,
        currencies=tuple(groups),
        unconverted=tuple(unconverted),
    )


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def set_commitment(
    session: Session,
    identifier: str,
    amount: Decimal | float | int | str,
    currency: str,
    *,
    commitment_date: date | str | None = None,
    name: str | None = None,
) -> CommitmentStatus:
    """Record commitment terms for ``identifier``, creating the investment if needed.

    Raises ``ValueError`` for a blank identifier, a non-positive or
    unparseable amount, a blank currency or an invalid date.
    """

    ident = (identifier or "").strip()
    if not ident:
        raise ValueError("investment identifier must be non-empty")
    value = parse_amount(amount)
    if value is None or value <= 0:
        raise ValueError(f"commitment must be a positive amount: {amount!r}")
    code = currency_to_code(currency)
    if code is None:
        raise ValueError("committed currency must be non-empty")
    if isinstance(commitment_date, str):
        commitment_date = date.fromisoformat(commitment_date.strip())

    inv = session.get(Investment, ensure_investment(session, ident, name=name))
    assert inv is not None
    inv.initial_commitment = _money(value)
    inv.committed_currency = code
    inv.commitment_date = commitment_date
    inv.updated_at = func.now()
    session.flush()
    logger.info(
        "commitments:set investment=%s amount=%s currency=%s", ident, inv.initial_commitment, code
    )
    status = commitment_status(session, ident)
    assert status is not None
    return status


def mark_commitment_complete(session: Session, identifier: str, complete: bool = True) -> None:
    """Set or clear the manual completion flag; unknown investments raise ``ValueError``."""

    inv = session.execute(
        select(Investment).where(Investment.identifier == identifier)
    ).scalar_one_or_none()
    if inv is None:
        raise ValueError(f"unknown investment {identifier!r}")
    inv.is_complete = complete
    inv.updated_at = func.now()
    session.flush()
    logger.info("commitments:mark_complete investment=%s complete=%s", identifier, complete)


__all__ = [
    "CommitmentStatus",
    "CurrencyCommitments",
    "OpenCommitmentsSummary",
    "called_to_date",
    "commitment_status",
    "commitment_statuses",
    "mark_commitment_complete",
    "open_commitments_summary",
    "set_commitment",
    "usd_rate_on_or_before",
]
