"""Data models and type aliases for ``pe_ledger``.

Records flowing through the pipeline are immutable: a ``RawRow`` is mapped to
canonical fields, normalized into a :class:`NormalizedTransaction`, paired
with a :class:`DedupResult` and finally turned into a :class:`RecordOutcome`
by the importer. Analytics work on :class:`CashFlow` series and return an
:class:`InvestmentMetrics` bundle.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------

# One spreadsheet row: column name -> raw cell value (str, number or None).
type RawRow = Mapping[str, Any]


# ---------------------------------------------------------------------------
# Transaction-type rules
# ---------------------------------------------------------------------------


class DirectionalityRule(StrEnum):
    """Sign policy applied to a raw amount for a given transaction type."""

    AS_IS = "as_is"
    ALWAYS_POSITIVE = "always_positive"
    ALWAYS_NEGATIVE = "always_negative"


class TransactionCategory(StrEnum):
    CAPITAL_CALL = "capital_call"
    DEPOSIT = "deposit"
    DISTRIBUTION = "distribution"
    INCOME_DISTRIBUTION = "income_distribution"
    WITHDRAWAL = "withdrawal"
    MANAGEMENT_FEE = "management_fee"
    FEE = "fee"
    UNREALIZED_GAIN_LOSS = "unrealized_gain_loss"
    INCOME = "income"
    TRANSFER = "transfer"


# Paid-in capital from the investor's side of the ledger.
CALLED_CATEGORIES: frozenset[str] = frozenset(
    {TransactionCategory.CAPITAL_CALL, TransactionCategory.DEPOSIT}
)
# Cash returned to the investor.
DISTRIBUTED_CATEGORIES: frozenset[str] = frozenset(
    {
        TransactionCategory.DISTRIBUTION,
        TransactionCategory.INCOME_DISTRIBUTION,
        TransactionCategory.WITHDRAWAL,
    }
)


class TransactionTypeRule(BaseModel):
    """Category and sign policy for one raw transaction-type string."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    raw_value: str
    category: TransactionCategory
    directionality: DirectionalityRule
    display: str | None = None

    @field_validator("raw_value")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("raw_value must be a non-empty string")
        return v


# Immutable mapping raw type string -> rule.
type DirectionalityTable = Mapping[str, TransactionTypeRule]


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


Severity = Literal["error", "warning"]


@dataclass(frozen=True, slots=True)
class Issue:
    """A non-fatal problem found while normalizing or previewing a row."""

    field: str
    severity: Severity
    message: str
    value: Any = None


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """Canonical transaction produced from one mapped row.

    Every field may be ``None`` when the corresponding input was missing or
    could not be parsed; ``issues`` explains why. ``amount_ils`` and
    ``exchange_rate_to_ils`` are carried from the source for reference only
    and never participate in conversion.
    """

    date_iso: str | None
    amount_original: Decimal | None
    amount_normalized: Decimal | None
    original_currency: str | None
    amount_usd: Decimal | None
    transaction_category: str | None
    cash_flow_direction: int | None
    counterparty: str | None
    investment_identifier: str | None
    investment_name: str | None = None
    transaction_type_raw: str | None = None
    description: str | None = None
    product_type: str | None = None
    amount_ils: Decimal | None = None
    exchange_rate_to_ils: Decimal | None = None
    issues: tuple[Issue, ...] = ()

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DuplicateRef:
    """Reference to an existing ledger row sharing a fingerprint."""

    transaction_id: int
    date: date
    amount_original: Decimal
    investment_identifier: str | None


@dataclass(frozen=True, slots=True)
class SimilarMatch:
    transaction_id: int
    date: date
    amount_original: Decimal
    investment_identifier: str | None
    score: int


@dataclass(frozen=True, slots=True)
class DedupResult:
    """Outcome of exact + fuzzy duplicate checks for one transaction.

    ``needs_review`` is set when no fingerprint could be computed or when
    similar (but not identical) rows exist. It never blocks an import on its
    own; only ``is_duplicate`` does.
    """

    fingerprint: str | None
    is_duplicate: bool = False
    duplicate_ref: DuplicateRef | None = None
    similar: tuple[SimilarMatch, ...] = ()
    needs_review: bool = False


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportRecord:
    """A normalized transaction ready for gating, with its batch position."""

    index: int
    normalized: NormalizedTransaction
    dedup: DedupResult
    source_row: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class ImportOptions:
    skip_duplicates: bool = True
    force_import: bool = False
    dry_run: bool = False
    source_file: str | None = None
    # Create missing ledger_investments rows for new identifiers.
    register_investments: bool = True


OutcomeStatus = Literal["imported", "skipped", "failed"]


@dataclass(frozen=True, slots=True)
class RecordOutcome:
    """Tagged per-record result of a batch import.

    ``transaction_id`` is set for ``imported`` outcomes of real runs (dry runs
    never allocate ids). ``reason`` explains skips; ``error`` carries the
    failure message.
    """

    index: int
    status: OutcomeStatus
    transaction_id: int | None = None
    reason: str | None = None
    duplicate_of: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class BatchError:
    index: int
    error: str


@dataclass(frozen=True, slots=True)
class ImportSummary:
    total: int
    imported: int
    skipped: int
    failed: int
    ids: tuple[int, ...] = ()
    errors: tuple[BatchError, ...] = ()
    outcomes: tuple[RecordOutcome, ...] = ()
    dry_run: bool = False


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CashFlow:
    date: date
    amount: float


@dataclass(frozen=True, slots=True)
class InvestmentMetrics:
    """Return multiples and totals for one investment or a portfolio.

    Multiples are ``None`` when nothing was called. ``residual_is_estimated``
    distinguishes the cost-basis default from a caller-supplied residual.
    """

    total_called: float
    total_distributed: float
    residual_value: float
    residual_is_estimated: bool
    net_position: float
    moic: float | None
    dpi: float | None
    rvpi: float | None
    tvpi: float | None
    xirr: float | None = None
    has_distributions: bool = False
    has_capital_calls: bool = False
    is_fully_realized: bool = False
    excluded_rows: int = 0


__all__ = [
    "CALLED_CATEGORIES",
    "CashFlow",
    "DISTRIBUTED_CATEGORIES",
    "DedupResult",
    "DirectionalityRule",
    "DirectionalityTable",
    "DuplicateRef",
    "BatchError",
    "ImportOptions",
    "ImportRecord",
    "ImportSummary",
    "InvestmentMetrics",
    "Issue",
    "NormalizedTransaction",
    "OutcomeStatus",
    "RawRow",
    "RecordOutcome",
    "Severity",
    "SimilarMatch",
    "TransactionCategory",
    "TransactionTypeRule",
]
