"""Pipeline entry points for ``pe_ledger``.

Wires column mapping, normalization, rate prefetch, deduplication, preview
and import into two calls used by the CLI and by host applications:

- :func:`prepare_rows` → :class:`PreparedBatch` (records + preview, no writes
  except rate-cache fills)
- :func:`ingest_rows` → :class:`IngestResult` (prepare, then
  :func:`~pe_ledger.importer.import_batch`)

Both run inside the caller's session; commit belongs to the caller's
``session_scope``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy.orm import Session

from .column_mapping import DEFAULT_COLUMN_MAPPINGS, ColumnMapping, date_format_from, map_row
from .config import Settings
from .duplicates import SIMILARITY_THRESHOLD, check_batch
from .identity import ExactNameIdentity, InvestmentIdentity, SlugIdentity
from .importer import import_batch
from .logging_setup import get_logger
from .models import (
    DirectionalityTable,
    ImportOptions,
    ImportRecord,
    ImportSummary,
    RawRow,
)
from .normalize import TransactionNormalizer
from .parsers import currency_to_code, parse_date
from .preview import Preview, build_preview
from .rates import RateCache, SqlRateStore
from .transaction_types import DEFAULT_TRANSACTION_TYPES

logger = get_logger("pe_ledger.api")


@dataclass(frozen=True, slots=True)
class PreparedBatch:
    records: tuple[ImportRecord, ...]
    preview: Preview


@dataclass(frozen=True, slots=True)
class IngestResult:
    preview: Preview
    summary: ImportSummary


def build_normalizer(
    session: Session,
    settings: Settings,
    *,
    table: DirectionalityTable | None = None,
    identity: Literal["exact", "slug"] = "exact",
    http: Any | None = None,
    counterparty_aliases: Mapping[str, str] | None = None,
) -> TransactionNormalizer:
    """Normalizer backed by the session's rate cache and the chosen identity strategy."""

    rates = RateCache(
        SqlRateStore(session),
        http=http,
        credentials=settings.credentials,
        timeout=settings.rate_timeout_sec,
    )
    resolver: InvestmentIdentity
    if identity == "slug":
        resolver = SlugIdentity(session)
    elif identity == "exact":
        resolver = ExactNameIdentity()
    else:
        raise ValueError(f"unknown identity strategy {identity!r}")
    return TransactionNormalizer(
        directionality_table=table if table is not None else DEFAULT_TRANSACTION_TYPES,
        rates=rates,
        identity=resolver,
        date_format=settings.date_format,
        counterparty_aliases=counterparty_aliases,
    )


def _prefetch_rates(
    normalizer: TransactionNormalizer,
    mapped: Sequence[Mapping[str, Any]],
    concurrency: int,
) -> None:
    rates = normalizer.rates
    if not isinstance(rates, RateCache):
        return
    keys = []
    for row in mapped:
        on = parse_date(row.get("date"), normalizer.date_format)
        code = currency_to_code(row.get("currency"))
        if on and code:
            keys.append((on, code, "USD"))
    if keys:
        rates.prefetch(keys, concurrency=concurrency)


def prepare_rows(
    session: Session,
    raw_rows: Sequence[RawRow],
    *,
    normalizer: TransactionNormalizer,
    mappings: Iterable[ColumnMapping] = DEFAULT_COLUMN_MAPPINGS,
    row_numbers: Sequence[int] | None = None,
    check_similarity: bool = True,
    similarity_threshold: int = SIMILARITY_THRESHOLD,
    prefetch: bool = True,
    prefetch_concurrency: int = 4,
) -> PreparedBatch:
    """Map, normalize and dedup ``raw_rows``; build the preview.

    ``row_numbers`` label rows in the preview (defaults to 1-based
    positions). A ``date_format`` on the mapping's ``date`` column applies
    when the normalizer has none of its own.
    """

    mapping_list = tuple(mappings)
    numbers = list(row_numbers) if row_numbers is not None else list(range(1, len(raw_rows) + 1))
    if len(numbers) != len(raw_rows):
        raise ValueError("row_numbers must align with raw_rows")

    if normalizer.date_format is None:
        fmt = date_format_from(mapping_list)
        if fmt:
            normalizer = dataclasses.replace(normalizer, date_format=fmt)

    mapped = [map_row(r, mapping_list) for r in raw_rows]
    if prefetch:
        _prefetch_rates(normalizer, mapped, prefetch_concurrency)

    normalized = [normalizer(m) for m in mapped]
    dedups = check_batch(
        session, normalized, check_similarity=check_similarity, threshold=similarity_threshold
    )
    records = tuple(
        ImportRecord(index=i, normalized=tx, dedup=dd, source_row=dict(raw))
        for i, (raw, tx, dd) in enumerate(zip(raw_rows, normalized, dedups, strict=True))
    )
    preview = build_preview(numbers, mapped, normalized, dedups)
    logger.info(
        "api:prepared rows=%d clean=%d duplicates=%d similar=%d issues=%d",
        preview.summary.total_rows,
        preview.summary.clean,
        preview.summary.exact_duplicates,
        preview.summary.similar,
        preview.summary.with_issues,
    )
    return PreparedBatch(records=records, preview=preview)


def ingest_rows(
    session: Session,
    raw_rows: Sequence[RawRow],
    *,
    normalizer: TransactionNormalizer,
    options: ImportOptions | None = None,
    mappings: Iterable[ColumnMapping] = DEFAULT_COLUMN_MAPPINGS,
    row_numbers: Sequence[int] | None = None,
    check_similarity: bool = True,
    similarity_threshold: int = SIMILARITY_THRESHOLD,
    prefetch: bool = True,
    prefetch_concurrency: int = 4,
) -> IngestResult:
    """Prepare ``raw_rows`` and import them with ``options``."""

    batch = prepare_rows(
        session,
        raw_rows,
        normalizer=normalizer,
        mappings=mappings,
        row_numbers=row_numbers,
        check_similarity=check_similarity,
        similarity_threshold=similarity_threshold,
        prefetch=prefetch,
        prefetch_concurrency=prefetch_concurrency,
    )
    summary = import_batch(session, batch.records, options)
    return IngestResult(preview=batch.preview, summary=summary)


__all__ = [
    "IngestResult",
    "PreparedBatch",
    "build_normalizer",
    "import_batch",
    "ingest_rows",
    "prepare_rows",
]
