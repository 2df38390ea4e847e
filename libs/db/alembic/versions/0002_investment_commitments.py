# ruff: noqa: I001
"""Commitment terms on ledger_investments.

Revision ID: 0002_investment_commitments
Revises: 0001_ledger_core
Create Date: 2026-10-19
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_investment_commitments"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    with op.batch_alter_table("ledger_investments") as batch:
        batch.add_column(sa.Column("initial_commitment", sa.Numeric(18, 2), nullable=True))
        batch.add_column(sa.Column("committed_currency", sa.String(8), nullable=True))
        batch.add_column(sa.Column("commitment_date", sa.Date(), nullable=True))
        batch.add_column(
            sa.Column(
                "is_complete",
                sa.Boolean(),
                nullable=False,
                server_default=sa.false(),
            )
        )
        batch.create_check_constraint(
            "ck_ledger_investments_commitment_positive",
            "initial_commitment IS NULL OR initial_commitment > 0",
        )


def downgrade() -> None:
    with op.batch_alter_table("ledger_investments") as batch:
        batch.drop_constraint("ck_ledger_investments_commitment_positive", type_="check")
        batch.drop_column("is_complete")
        batch.drop_column("commitment_date")
        batch.drop_column("committed_currency")
        batch.drop_column("initial_commitment")
