"""Public interface for the ``pe_ledger`` package.

This module exposes the package's pipeline entry points, return analytics and
public models/types as the stable import surface. There is no runtime logic
here, only symbol re-exports.
"""

from .api import (
    IngestResult,
    PreparedBatch,
    build_normalizer,
    import_batch,
    ingest_rows,
    prepare_rows,
)
from .commitments import (
    CommitmentStatus,
    OpenCommitmentsSummary,
    commitment_status,
    commitment_statuses,
    mark_commitment_complete,
    open_commitments_summary,
    set_commitment,
)
from .duplicates import check_batch, check_deduplication, compute_fingerprint
from .metrics import calculate_all_metrics, dpi, moic, rvpi, tvpi
from .models import (
    CashFlow,
    DedupResult,
    DirectionalityRule,
    ImportOptions,
    ImportRecord,
    ImportSummary,
    InvestmentMetrics,
    Issue,
    NormalizedTransaction,
    RecordOutcome,
    TransactionCategory,
    TransactionTypeRule,
)
from .normalize import TransactionNormalizer, normalize
from .rates import RateCache, SqlRateStore
from .reports import investment_report, portfolio_report
from .xirr import transactions_to_cash_flows, xirr

__all__ = [
    # Pipeline
    "build_normalizer",
    "check_batch",
    "check_deduplication",
    "compute_fingerprint",
    "import_batch",
    "ingest_rows",
    "normalize",
    "prepare_rows",
    "IngestResult",
    "PreparedBatch",
    "RateCache",
    "SqlRateStore",
    "TransactionNormalizer",
    # Analytics
    "calculate_all_metrics",
    "dpi",
    "investment_report",
    "moic",
    "portfolio_report",
    "rvpi",
    "transactions_to_cash_flows",
    "tvpi",
    "xirr",
    # Commitments
    "commitment_status",
    "commitment_statuses",
    "mark_commitment_complete",
    "open_commitments_summary",
    "set_commitment",
    "CommitmentStatus",
    "OpenCommitmentsSummary",
    # Models / types
    "CashFlow",
    "DedupResult",
    "DirectionalityRule",
    "ImportOptions",
    "ImportRecord",
    "ImportSummary",
    "InvestmentMetrics",
    "Issue",
    "NormalizedTransaction",
    "RecordOutcome",
    "TransactionCategory",
    "TransactionTypeRule",
]
