"""Fingerprinting and duplicate detection against the persisted ledger.

Public surface:
- ``compute_fingerprint``: SHA-256 over ``date|amount|investment`` or ``None``
  when any part is missing.
- ``check_duplicate`` / ``batch_check_duplicates``: authoritative exact
  lookups by fingerprint.
- ``calculate_similarity`` / ``find_similar``: informational fuzzy matching
  (score 0–100) that never blocks an import.
- ``check_deduplication`` / ``check_batch``: both checks folded into
  :class:`~pe_ledger.models.DedupResult` values.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.ledger import LedgerTransaction

from .logging_setup import get_logger
from .models import DedupResult, DuplicateRef, NormalizedTransaction, SimilarMatch

logger = get_logger("pe_ledger.duplicates")

SIMILARITY_THRESHOLD = 80
SIMILAR_WINDOW_DAYS = 7
SIMILAR_AMOUNT_TOLERANCE = Decimal("0.10")
SIMILAR_CANDIDATE_LIMIT = 50
_IN_CHUNK = 500


def _amount_key(amount: Decimal) -> str:
    q = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if q == 0:
        q = Decimal("0.00")
    return f"{q:.2f}"


def compute_fingerprint(tx: NormalizedTransaction) -> str | None:
    """Return the hex SHA-256 of ``date_iso|amount_original|investment_identifier``.

    The amount is rendered with exactly two decimals so ``1000``, ``1000.0``
    and ``1,000.00`` fingerprint identically. Returns ``None`` when any input
    is missing; such rows need manual review.
    """

    if not tx.date_iso or tx.amount_original is None or not tx.investment_identifier:
        return None
    payload = f"{tx.date_iso}|{_amount_key(tx.amount_original)}|{tx.investment_identifier}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _ref(row: LedgerTransaction) -> DuplicateRef:
    return DuplicateRef(
        transaction_id=row.id,
        date=row.date,
        amount_original=row.amount_original,
        investment_identifier=row.investment_identifier,
    )


def check_duplicate(session: Session, fingerprint: str) -> DuplicateRef | None:
    row = session.execute(
        select(LedgerTransaction).where(LedgerTransaction.fingerprint_sha256 == fingerprint)
    ).scalar_one_or_none()
    return _ref(row) if row is not None else None


def batch_check_duplicates(
    session: Session, fingerprints: Iterable[str | None]
) -> dict[str, DuplicateRef]:
    """Return existing ledger rows for ``fingerprints`` (``None`` entries ignored)."""

    wanted = sorted({fp for fp in fingerprints if fp})
    found: dict[str, DuplicateRef] = {}
    for start in range(0, len(wanted), _IN_CHUNK):
        chunk = wanted[start : start + _IN_CHUNK]
        rows = session.execute(
            select(LedgerTransaction).where(LedgerTransaction.fingerprint_sha256.in_(chunk))
        ).scalars()
        for row in rows:
            assert row.fingerprint_sha256 is not None
            found[row.fingerprint_sha256] = _ref(row)
    return found


# ---------------------------------------------------------------------------
# Fuzzy similarity
# ---------------------------------------------------------------------------


def calculate_similarity(
    date_a: date | None,
    amount_a: Decimal | None,
    identifier_a: str | None,
    date_b: date | None,
    amount_b: Decimal | None,
    identifier_b: str | None,
) -> int:
    """Score two transactions 0–100.

    - same date: 40
    - amounts within 1% / 5% / 10% of their mean absolute value: 40 / 20 / 10
    - same investment identifier: 20
    """

    score = 0
    if date_a is not None and date_a == date_b:
        score += 40
    if amount_a is not None and amount_b is not None:
        mean = (abs(amount_a) + abs(amount_b)) / 2
        if mean == 0:
            ratio = Decimal(0)
        else:
            ratio = abs(amount_a - amount_b) / mean
        if ratio < Decimal("0.01"):
            score += 40
        elif ratio < Decimal("0.05"):
            score += 20
        elif ratio < Decimal("0.10"):
            score += 10
    if identifier_a is not None and identifier_a == identifier_b:
        score += 20
    return score


def find_similar(
    session: Session,
    tx: NormalizedTransaction,
    *,
    threshold: int = SIMILARITY_THRESHOLD,
    limit: int = SIMILAR_CANDIDATE_LIMIT,
    exclude_ids: Sequence[int] = (),
) -> list[SimilarMatch]:
    """Ledger rows within ±7 days and ±10% of ``tx`` scoring at least ``threshold``.

    Sorted by score (highest first), then by id. Transactions without a date
    or amount have no candidates.
    """

    if not tx.date_iso or tx.amount_original is None:
        return []
    try:
        on = date.fromisoformat(tx.date_iso)
    except ValueError:
        return []

    amount = tx.amount_original
    lo, hi = sorted(
        (amount * (1 - SIMILAR_AMOUNT_TOLERANCE), amount * (1 + SIMILAR_AMOUNT_TOLERANCE))
    )
    stmt = (
        select(LedgerTransaction)
        .where(
            LedgerTransaction.date >= on - timedelta(days=SIMILAR_WINDOW_DAYS),
            LedgerTransaction.date <= on + timedelta(days=SIMILAR_WINDOW_DAYS),
            LedgerTransaction.amount_original >= lo,
            LedgerTransaction.amount_original <= hi,
        )
        .order_by(LedgerTransaction.date, LedgerTransaction.id)
        .limit(limit)
    )
    if exclude_ids:
        stmt = stmt.where(LedgerTransaction.id.notin_(list(exclude_ids)))

    matches: list[SimilarMatch] = []
    for row in session.execute(stmt).scalars():
        score = calculate_similarity(
            on,
            amount,
            tx.investment_identifier,
            row.date,
            row.amount_original,
            row.investment_identifier,
        )
        if score >= threshold:
            matches.append(
                SimilarMatch(
                    transaction_id=row.id,
                    date=row.date,
                    amount_original=row.amount_original,
                    investment_identifier=row.investment_identifier,
                    score=score,
                )
            )
    matches.sort(key=lambda m: (-m.score, m.transaction_id))
    return matches


# ---------------------------------------------------------------------------
# Combined checks
# ---------------------------------------------------------------------------


def check_deduplication(
    session: Session,
    tx: NormalizedTransaction,
    *,
    check_similarity: bool = True,
    threshold: int = SIMILARITY_THRESHOLD,
    known: Mapping[str, DuplicateRef] | None = None,
) -> DedupResult:
    """Run exact and (optionally) fuzzy checks for ``tx``.

    ``known`` is the result of :func:`batch_check_duplicates` for the batch;
    when given, it replaces the per-record exact lookup.
    """

    fingerprint = compute_fingerprint(tx)
    ref: DuplicateRef | None = None
    if fingerprint is not None:
        ref = known.get(fingerprint) if known is not None else check_duplicate(session, fingerprint)

    similar: list[SimilarMatch] = []
    if check_similarity:
        exclude = (ref.transaction_id,) if ref is not None else ()
        similar = find_similar(session, tx, threshold=threshold, exclude_ids=exclude)

    return DedupResult(
        fingerprint=fingerprint,
        is_duplicate=ref is not None,
        duplicate_ref=ref,
        similar=tuple(similar),
        needs_review=fingerprint is None or (ref is None and bool(similar)),
    )


def check_batch(
    session: Session,
    transactions: Sequence[NormalizedTransaction],
    *,
    check_similarity: bool = True,
    threshold: int = SIMILARITY_THRESHOLD,
) -> list[DedupResult]:
    """:func:`check_deduplication` for a batch with one exact-lookup query."""

    known = batch_check_duplicates(session, (compute_fingerprint(tx) for tx in transactions))
    results = [
        check_deduplication(
            session, tx, check_similarity=check_similarity, threshold=threshold, known=known
        )
        for tx in transactions
    ]
    logger.info(
        "duplicates:batch_checked total=%d exact=%d needs_review=%d",
        len(results),
        sum(1 for r in results if r.is_duplicate),
        sum(1 for r in results if r.needs_review),
    )
    return results


__all__ = [
    "SIMILARITY_THRESHOLD",
    "batch_check_duplicates",
    "calculate_similarity",
    "check_batch",
    "check_deduplication",
    "check_duplicate",
    "compute_fingerprint",
    "find_similar",
]
