"""Row-by-row import preview.

Combines normalizer issues and dedup results into a status per row and a
summary of what an import with default options would do. Statuses:

- ``has_issues``: at least one error (unparseable date/amount), or a warning
  on an otherwise new row
- ``duplicate``: exact fingerprint match in the ledger
- ``similar``: new row with near-duplicates worth a look
- ``clean``: nothing to report

Errors take precedence over duplicates; duplicates over similar matches;
similar matches over plain warnings.

A row repeating the fingerprint of an earlier row in the same batch gets a
``fingerprint`` warning and does not count towards ``will_import``, matching
the importer's ``duplicate_in_batch`` skip.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from .models import DedupResult, Issue, NormalizedTransaction

PreviewStatus = Literal["clean", "duplicate", "similar", "has_issues"]


@dataclass(frozen=True, slots=True)
class PreviewRow:
    row_number: int
    mapped: dict[str, Any]
    normalized: NormalizedTransaction
    dedup: DedupResult
    issues: tuple[Issue, ...]
    status: PreviewStatus
    will_import: bool


@dataclass(frozen=True, slots=True)
class PreviewSummary:
    total_rows: int
    clean: int
    exact_duplicates: int
    similar: int
    with_issues: int
    will_import: int
    will_skip: int


@dataclass(frozen=True, slots=True)
class Preview:
    rows: tuple[PreviewRow, ...]
    summary: PreviewSummary


def row_issues(tx: NormalizedTransaction, dedup: DedupResult) -> tuple[Issue, ...]:
    issues = list(tx.issues)
    if dedup.fingerprint is None and not tx.has_errors:
        issues.append(
            Issue("fingerprint", "warning", "cannot compute fingerprint; needs manual review")
        )
    return tuple(issues)


def row_status(issues: Sequence[Issue], dedup: DedupResult) -> PreviewStatus:
    if any(i.severity == "error" for i in issues):
        return "has_issues"
    if dedup.is_duplicate:
        return "duplicate"
    if dedup.similar:
        return "similar"
    if issues:
        return "has_issues"
    return "clean"


def build_preview(
    row_numbers: Sequence[int],
    mapped_rows: Sequence[dict[str, Any]],
    normalized: Sequence[NormalizedTransaction],
    dedups: Sequence[DedupResult],
) -> Preview:
    """Assemble a :class:`Preview`; all sequences are aligned by position."""

    if not (len(row_numbers) == len(mapped_rows) == len(normalized) == len(dedups)):
        raise ValueError("build_preview inputs must have equal lengths")

    rows: list[PreviewRow] = []
    first_seen: dict[str, int] = {}
    for num, mapped, tx, dd in zip(row_numbers, mapped_rows, normalized, dedups, strict=True):
        issues = row_issues(tx, dd)
        importable = not tx.has_errors and not dd.is_duplicate and dd.fingerprint is not None
        if importable and dd.fingerprint in first_seen:
            importable = False
            issues += (
                Issue(
                    "fingerprint",
                    "warning",
                    f"repeats row {first_seen[dd.fingerprint]} in this batch",
                ),
            )
        elif importable:
            first_seen[dd.fingerprint] = num
        rows.append(
            PreviewRow(
                row_number=num,
                mapped=mapped,
                normalized=tx,
                dedup=dd,
                issues=issues,
                status=row_status(issues, dd),
                will_import=importable,
            )
        )

    will_import = sum(1 for r in rows if r.will_import)
    summary = PreviewSummary(
        total_rows=len(rows),
        clean=sum(1 for r in rows if r.status == "clean"),
        exact_duplicates=sum(1 for r in rows if r.status == "duplicate"),
        similar=sum(1 for r in rows if r.status == "similar"),
        with_issues=sum(1 for r in rows if r.status == "has_issues"),
        will_import=will_import,
        will_skip=len(rows) - will_import,
    )
    return Preview(rows=tuple(rows), summary=summary)


__all__ = [
    "Preview",
    "PreviewRow",
    "PreviewStatus",
    "PreviewSummary",
    "build_preview",
    "row_issues",
    "row_status",
]
