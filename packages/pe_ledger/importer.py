# ruff: noqa: I001
"""Batch import of normalized, deduplicated records into the ledger.

Gating, evaluated per record in order:

(a) ``skip_duplicates`` and the dedup check found an existing row → skipped
    (``duplicate``, with a reference to that row).
(b) unless ``force_import``: missing date or amount → skipped
    (``missing_required_fields``); missing fingerprint → skipped
    (``needs_review``).
(c) otherwise queued. A fingerprint already queued earlier in the same batch
    is skipped as ``duplicate_in_batch``, which is what insert-if-absent
    would do, so dry runs predict it.

Queued records are inserted one by one, each inside its own SAVEPOINT, with
``INSERT … ON CONFLICT (fingerprint) DO NOTHING``. A no-op insert (another
writer won the race) is a skip, not an error. A database error rolls back
that record's savepoint only and is reported in ``errors`` with the record's
original index.

``dry_run`` applies identical gating against the same store state and
returns the predicted summary without writing anything.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import (
    BatchError,
    ImportOptions,
    ImportRecord,
    ImportSummary,
    RecordOutcome,
)
from .persistence import (
    ensure_investment,
    find_investment_id,
    insert_transaction_if_absent,
    transaction_values,
)

logger = get_logger("pe_ledger.importer")


def gate(
    record: ImportRecord, options: ImportOptions, queued: set[str]
) -> RecordOutcome | None:
    """Return a skip outcome for ``record`` or ``None`` when it should be inserted."""

    tx, dedup = record.normalized, record.dedup
    if options.skip_duplicates and dedup.is_duplicate:
        ref = dedup.duplicate_ref
        return RecordOutcome(
            index=record.index,
            status="skipped",
            reason="duplicate",
            duplicate_of=ref.transaction_id if ref is not None else None,
        )
    if not options.force_import:
        if tx.date_iso is None or tx.amount_original is None:
            return RecordOutcome(
                index=record.index, status="skipped", reason="missing_required_fields"
            )
        if dedup.fingerprint is None:
            return RecordOutcome(index=record.index, status="skipped", reason="needs_review")
    if dedup.fingerprint is not None and dedup.fingerprint in queued:
        return RecordOutcome(index=record.index, status="skipped", reason="duplicate_in_batch")
    return None


def _predict(record: ImportRecord) -> RecordOutcome:
    tx, dedup = record.normalized, record.dedup
    # An existing fingerprint turns the real insert into a no-op.
    if dedup.is_duplicate:
        ref = dedup.duplicate_ref
        return RecordOutcome(
            index=record.index,
            status="skipped",
            reason="duplicate",
            duplicate_of=ref.transaction_id if ref is not None else None,
        )
    # Mirrors the NOT NULL columns a forced incomplete record would violate.
    if tx.date_iso is None or tx.amount_original is None:
        return RecordOutcome(
            index=record.index,
            status="failed",
            error="NOT NULL constraint failed: date and amount are required",
        )
    return RecordOutcome(index=record.index, status="imported")


def _resolve_investment(
    session: Session,
    record: ImportRecord,
    options: ImportOptions,
    memo: dict[str, int | None],
) -> int | None:
    tx = record.normalized
    identifier = tx.investment_identifier
    if identifier is None:
        return None
    if identifier not in memo:
        if options.register_investments:
            memo[identifier] = ensure_investment(
                session,
                identifier,
                name=tx.investment_name,
                counterparty=tx.counterparty,
                product_type=tx.product_type,
                slug=None if identifier == tx.investment_name else identifier,
            )
        else:
            memo[identifier] = find_investment_id(session, identifier)
    return memo[identifier]


def _insert_one(
    session: Session,
    record: ImportRecord,
    options: ImportOptions,
    investments: dict[str, int | None],
) -> RecordOutcome:
    try:
        with session.begin_nested():
            investment_id = _resolve_investment(session, record, options, investments)
            values = transaction_values(
                record.normalized,
                fingerprint=record.dedup.fingerprint,
                investment_id=investment_id,
                source_row=record.source_row,
                source_file=options.source_file,
            )
            new_id = insert_transaction_if_absent(session, values)
    except SQLAlchemyError as e:
        # The savepoint may have created the investment row; forget it.
        identifier = record.normalized.investment_identifier
        if identifier is not None:
            investments.pop(identifier, None)
        message = str(getattr(e, "orig", None) or e)
        logger.warning("import:record_failed index=%d error=%s", record.index, message)
        return RecordOutcome(index=record.index, status="failed", error=message)

    if new_id is None:
        return RecordOutcome(index=record.index, status="skipped", reason="duplicate")
    return RecordOutcome(index=record.index, status="imported", transaction_id=new_id)


def import_batch(
    session: Session,
    records: Iterable[ImportRecord],
    options: ImportOptions | None = None,
) -> ImportSummary:
    """Import ``records`` best-effort and return the per-record summary.

    The caller owns the outer transaction (commit happens in its
    ``session_scope``). With ``options.dry_run`` nothing is written.
    """

    opts = options or ImportOptions()
    items = list(records)
    outcomes: list[RecordOutcome] = []
    queued: set[str] = set()
    investments: dict[str, int | None] = {}

    for record in items:
        skipped = gate(record, opts, queued)
        if skipped is not None:
            outcomes.append(skipped)
            continue
        if record.dedup.fingerprint is not None:
            queued.add(record.dedup.fingerprint)
        if opts.dry_run:
            outcomes.append(_predict(record))
            continue
        outcomes.append(_insert_one(session, record, opts, investments))

    summary = ImportSummary(
        total=len(items),
        imported=sum(1 for o in outcomes if o.status == "imported"),
        skipped=sum(1 for o in outcomes if o.status == "skipped"),
        failed=sum(1 for o in outcomes if o.status == "failed"),
        ids=tuple(o.transaction_id for o in outcomes if o.transaction_id is not None),
        errors=tuple(
            BatchError(index=o.index, error=o.error or "unknown error")
            for o in outcomes
            if o.status == "failed"
        ),
        outcomes=tuple(outcomes),
        dry_run=opts.dry_run,
    )
    logger.info(
        "import:batch_done total=%d imported=%d skipped=%d failed=%d dry_run=%s",
        summary.total,
        summary.imported,
        summary.skipped,
        summary.failed,
        summary.dry_run,
    )
    return summary


__all__ = ["gate", "import_batch"]
