# ruff: noqa: I001
"""Ledger core tables: investments, name mappings, transactions, exchange rates.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ledger_investments
    op.create_table(
        "ledger_investments",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("identifier", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.String(), nullable=True),
        sa.Column("counterparty", sa.Text(), nullable=True),
        sa.Column("product_type", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_ledger_investments_slug", "ledger_investments", ["slug"])

    # ledger_investment_name_mappings
    op.create_table(
        "ledger_investment_name_mappings",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("raw_name", sa.Text(), nullable=False, unique=True),
        sa.Column("investment_slug", sa.String(), nullable=False),
        *_timestamps(),
    )

    # ledger_transactions
    op.create_table(
        "ledger_transactions",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("transaction_type_raw", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("cash_flow_direction", sa.SmallInteger(), nullable=True),
        sa.Column("amount_original", sa.Numeric(18, 2), nullable=False),
        sa.Column("amount_normalized", sa.Numeric(18, 2), nullable=False),
        sa.Column("original_currency", sa.String(8), nullable=True),
        sa.Column("amount_usd", sa.Numeric(18, 2), nullable=True),
        sa.Column("amount_ils", sa.Numeric(18, 2), nullable=True),
        sa.Column("exchange_rate_to_ils", sa.Numeric(18, 8), nullable=True),
        sa.Column("investment_identifier", sa.Text(), nullable=True),
        sa.Column(
            "investment_id",
            _PK,
            sa.ForeignKey("ledger_investments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("counterparty", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("fingerprint_sha256", sa.CHAR(64), nullable=True, unique=True),
        sa.Column("source_metadata", sa.JSON(), nullable=True),
        sa.Column("source_file", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "cash_flow_direction IS NULL OR cash_flow_direction IN (-1, 1)",
            name="ck_ledger_tx_direction",
        ),
    )
    op.create_index("ix_ledger_tx_date", "ledger_transactions", ["date"])
    op.create_index("ix_ledger_tx_identifier", "ledger_transactions", ["investment_identifier"])
    op.create_index("ix_ledger_tx_investment_id", "ledger_transactions", ["investment_id"])
    op.create_index("ix_ledger_tx_category", "ledger_transactions", ["category"])

    # ledger_exchange_rates
    op.create_table(
        "ledger_exchange_rates",
        sa.Column("date", sa.Date(), primary_key=True),
        sa.Column("from_currency", sa.String(8), primary_key=True),
        sa.Column("to_currency", sa.String(8), primary_key=True),
        sa.Column("rate", sa.Numeric(18, 8), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("source IN ('api', 'manual')", name="ck_ledger_rate_source"),
    )


def downgrade() -> None:
    op.drop_table("ledger_exchange_rates")
    op.drop_index("ix_ledger_tx_category", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_investment_id", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_identifier", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_date", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_table("ledger_investment_name_mappings")
    op.drop_index("ix_ledger_investments_slug", table_name="ledger_investments")
    op.drop_table("ledger_investments")
