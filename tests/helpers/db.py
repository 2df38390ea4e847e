"""DB helpers for tests: bootstrap a temporary SQLite ledger and seed rows."""

from __future__ import annotations

import os
from datetime import date
from decimal import Decimal
from pathlib import Path

from db import Base
from db.client import get_engine
from db.models.ledger import LedgerTransaction
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pe_ledger.duplicates import compute_fingerprint
from pe_ledger.models import CALLED_CATEGORIES, DISTRIBUTED_CATEGORIES, NormalizedTransaction


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize the ledger schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_transaction(
    session: Session,
    *,
    on: str,
    amount: str | Decimal,
    identifier: str | None,
    category: str = "capital_call",
    currency: str = "USD",
    amount_usd: str | Decimal | None = "auto",
) -> int:
    """Insert one ledger row directly and return its id.

    The normalized amount follows the category's cash-flow sign. With
    ``amount_usd="auto"`` USD rows convert at 1 and other currencies stay
    unconverted (``NULL``).
    """

    original = Decimal(str(amount))
    if category in CALLED_CATEGORIES:
        normalized, direction = -abs(original), -1
    elif category in DISTRIBUTED_CATEGORIES:
        normalized, direction = abs(original), 1
    else:
        normalized, direction = original, (1 if original > 0 else -1) if original else None

    if amount_usd == "auto":
        usd = normalized if currency == "USD" else None
    else:
        usd = None if amount_usd is None else Decimal(str(amount_usd))

    tx = NormalizedTransaction(
        date_iso=on,
        amount_original=original,
        amount_normalized=normalized,
        original_currency=currency,
        amount_usd=usd,
        transaction_category=category,
        cash_flow_direction=direction,
        counterparty=None,
        investment_identifier=identifier,
    )
    row = LedgerTransaction(
        date=date.fromisoformat(on),
        category=category,
        cash_flow_direction=direction,
        amount_original=original,
        amount_normalized=normalized,
        original_currency=currency,
        amount_usd=usd,
        investment_identifier=identifier,
        fingerprint_sha256=compute_fingerprint(tx),
    )
    session.add(row)
    session.flush()
    return row.id


def count_transactions(session: Session) -> int:
    return session.execute(select(func.count()).select_from(LedgerTransaction)).scalar_one()
