from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    false as sa_false,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT identity on Postgres; SQLite only autoincrements an INTEGER rowid.
_PK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: ledger_investments
# ---------------------------


class Investment(Base):
    __tablename__ = "ledger_investments"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    # Matching key used by the import pipeline. With the default identity
    # strategy this is the trimmed raw name; with slug identity it is the slug.
    identifier: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    counterparty: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Commitment terms, in the currency capital is called in. Called-to-date
    # and remaining amounts are derived from ledger rows, not stored.
    initial_commitment: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    committed_currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    commitment_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    is_complete: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa_false()
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "initial_commitment IS NULL OR initial_commitment > 0",
            name="ck_ledger_investments_commitment_positive",
        ),
    )


class InvestmentNameMapping(Base):
    __tablename__ = "ledger_investment_name_mappings"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    raw_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    investment_slug: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Core: ledger_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    transaction_type_raw: Mapped[str | None] = mapped_column(Text, nullable=True)
    # NULL when the raw type had no directionality rule at import time.
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    cash_flow_direction: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    amount_original: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    amount_normalized: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    original_currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    amount_usd: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    # Warehoused as provided by the source institution; never recomputed.
    amount_ils: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    exchange_rate_to_ils: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    investment_identifier: Mapped[str | None] = mapped_column(Text, nullable=True)
    investment_id: Mapped[int | None] = mapped_column(
        _PK,
        ForeignKey("ledger_investments.id", ondelete="SET NULL"),
        nullable=True,
    )
    counterparty: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Multiple NULLs are allowed by the unique constraint on both Postgres and
    # SQLite, which is what force-imported rows without a fingerprint rely on.
    fingerprint_sha256: Mapped[str | None] = mapped_column(CHAR(64), nullable=True, unique=True)
    source_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    source_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "cash_flow_direction IS NULL OR cash_flow_direction IN (-1, 1)",
            name="ck_ledger_tx_direction",
        ),
        Index("ix_ledger_tx_date", "date"),
        Index("ix_ledger_tx_identifier", "investment_identifier"),
        Index("ix_ledger_tx_investment_id", "investment_id"),
        Index("ix_ledger_tx_category", "category"),
    )


# ---------------------------
# Cache: ledger_exchange_rates
# ---------------------------


class ExchangeRate(Base):
    __tablename__ = "ledger_exchange_rates"

    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    from_currency: Mapped[str] = mapped_column(String(8), primary_key=True)
    to_currency: Mapped[str] = mapped_column(String(8), primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("source IN ('api', 'manual')", name="ck_ledger_rate_source"),
    )


__all__ = [
    "Base",
    "ExchangeRate",
    "Investment",
    "InvestmentNameMapping",
    "LedgerTransaction",
]
