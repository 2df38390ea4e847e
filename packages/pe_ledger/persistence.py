# ruff: noqa: I001
"""Persistence integration for ``pe_ledger``.

Functions here write to the shared ledger tables owned by ``libs/db`` using
the ORM models in ``db.models.ledger`` and a caller-provided session. They
never commit; transaction scope belongs to the caller (``db.client``
``session_scope``).

Scope:
- Dialect-aware ``INSERT … ON CONFLICT`` for Postgres and SQLite.
- Insert-if-absent for ledger transactions keyed by fingerprint.
- Insert-if-absent for investments keyed by identifier.
- Upsert of raw-name → slug mappings.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models.ledger import Investment, InvestmentNameMapping, LedgerTransaction
from .models import NormalizedTransaction


def _to_decimal_2(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    try:
        d = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _to_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_json_safe(v) for v in value]
    return str(value)


def dialect_insert(session: Session, model: type) -> Any:
    """Return an ``insert()`` construct supporting ``ON CONFLICT`` for the bound dialect."""

    name = session.get_bind().dialect.name
    if name == "postgresql":
        return pg_insert(model)
    if name == "sqlite":
        return sqlite_insert(model)
    raise RuntimeError(f"unsupported database dialect for upserts: {name}")


# ---------------------------------------------------------------------------
# Investments
# ---------------------------------------------------------------------------


def find_investment_id(session: Session, identifier: str) -> int | None:
    return session.execute(
        select(Investment.id).where(Investment.identifier == identifier)
    ).scalar_one_or_none()


def ensure_investment(
    session: Session,
    identifier: str,
    *,
    name: str | None = None,
    slug: str | None = None,
    counterparty: str | None = None,
    product_type: str | None = None,
) -> int:
    """Return the id of the investment keyed by ``identifier``, creating it if absent.

    Existing rows are never updated; concurrent creators converge on the row
    that won the unique index.
    """

    stmt = (
        dialect_insert(session, Investment)
        .values(
            identifier=identifier,
            name=name or identifier,
            slug=slug,
            counterparty=counterparty,
            product_type=product_type,
        )
        .on_conflict_do_nothing(index_elements=[Investment.identifier])
    )
    session.execute(stmt)
    inv_id = find_investment_id(session, identifier)
    assert inv_id is not None  # inserted above or already present
    return inv_id


def upsert_name_mapping(session: Session, raw_name: str, slug: str) -> None:
    """Map ``raw_name`` to ``slug`` (last write wins)."""

    stmt = dialect_insert(session, InvestmentNameMapping).values(
        raw_name=raw_name.strip(), investment_slug=slug
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[InvestmentNameMapping.raw_name],
        set_={"investment_slug": stmt.excluded.investment_slug, "updated_at": func.now()},
    )
    session.execute(stmt)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def transaction_values(
    tx: NormalizedTransaction,
    *,
    fingerprint: str | None,
    investment_id: int | None,
    source_row: Mapping[str, Any] | None = None,
    source_file: str | None = None,
) -> dict[str, Any]:
    """Build the ``ledger_transactions`` column values for ``tx``.

    Missing date or amount are passed through as ``None`` and rejected by the
    NOT NULL constraints; force-imported incomplete rows surface as per-record
    failures that way.
    """

    return {
        "date": _to_date(tx.date_iso),
        "transaction_type_raw": tx.transaction_type_raw,
        "category": tx.transaction_category,
        "cash_flow_direction": tx.cash_flow_direction,
        "amount_original": _to_decimal_2(tx.amount_original),
        "amount_normalized": _to_decimal_2(tx.amount_normalized),
        "original_currency": tx.original_currency,
        "amount_usd": _to_decimal_2(tx.amount_usd),
        "amount_ils": _to_decimal_2(tx.amount_ils),
        "exchange_rate_to_ils": tx.exchange_rate_to_ils,
        "investment_identifier": tx.investment_identifier,
        "investment_id": investment_id,
        "counterparty": tx.counterparty,
        "description": tx.description,
        "fingerprint_sha256": fingerprint,
        "source_metadata": _json_safe(dict(source_row)) if source_row is not None else None,
        "source_file": source_file,
    }


def insert_transaction_if_absent(session: Session, values: Mapping[str, Any]) -> int | None:
    """Insert one ledger row unless its fingerprint already exists.

    Returns the new row id, or ``None`` when the unique fingerprint index
    turned the insert into a no-op. Rows without a fingerprint always insert.
    """

    stmt = (
        dialect_insert(session, LedgerTransaction)
        .values(**values)
        .on_conflict_do_nothing(index_elements=[LedgerTransaction.fingerprint_sha256])
        .returning(LedgerTransaction.id)
    )
    return session.execute(stmt).scalar_one_or_none()


__all__ = [
    "dialect_insert",
    "ensure_investment",
    "find_investment_id",
    "insert_transaction_if_absent",
    "transaction_values",
    "upsert_name_mapping",
]
