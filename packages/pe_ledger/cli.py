# ruff: noqa: I001
"""CLI for the ``pe_ledger`` package.

Command handlers (``cmd_*``) return a process exit code and print
``Error: …`` to stderr on failure; the Typer commands below are thin wrappers
around them. Environment variables (``DATABASE_URL``, provider API keys,
``PE_LEDGER_*`` tuning) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Business logic lives in
``pe_ledger.api``, ``pe_ledger.rates``, ``pe_ledger.reports`` and
``pe_ledger.commitments``.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging


# ---- Small module-level helpers used by CLI commands -------------------------


def _read_csv(csv_path: str) -> list[tuple[int, dict[str, str]]] | None:
    """Read rows below the detected header, reporting failures on stderr."""

    import csv

    from .ingest.csv_rows import read_csv_rows

    try:
        with open(csv_path, encoding="utf-8-sig", newline="") as f:
            return read_csv_rows(f)
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
    except csv.Error as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
    except UnicodeDecodeError as e:
        print(f"Error: '{csv_path}' is not UTF-8 text: {e}", file=sys.stderr)
    return None


def _load_table(types_file: str | None):
    from .transaction_types import DEFAULT_TRANSACTION_TYPES, load_transaction_types

    if types_file is None:
        return DEFAULT_TRANSACTION_TYPES
    return load_transaction_types(types_file)


def _fmt(value: object) -> str:
    return "" if value is None else str(value)


def _prepare(
    csv_path: str,
    *,
    date_format: str | None,
    types_file: str | None,
    identity: str,
):
    """Shared setup for ``import-csv`` and ``preview-csv``.

    Returns ``(settings, rows, table)`` or ``None`` after printing an error.
    """

    from .config import Settings, load_settings

    try:
        settings = load_settings()
        if date_format is not None:
            settings = Settings(**{**settings.model_dump(), "date_format": date_format})
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None

    if identity not in {"exact", "slug"}:
        print(
            f"Error: unknown identity strategy {identity!r} (expected exact or slug)",
            file=sys.stderr,
        )
        return None

    try:
        table = _load_table(types_file)
    except (OSError, ValueError) as e:
        print(f"Error: failed to load transaction types: {e}", file=sys.stderr)
        return None

    rows = _read_csv(csv_path)
    if rows is None:
        return None
    return settings, rows, table


def _print_preview(preview) -> None:
    for row in preview.rows:
        tx = row.normalized
        notes = "; ".join(f"{i.field}: {i.message}" for i in row.issues)
        print(
            "\t".join(
                [
                    str(row.row_number),
                    row.status,
                    _fmt(tx.date_iso),
                    _fmt(tx.amount_normalized),
                    _fmt(tx.original_currency),
                    _fmt(tx.investment_identifier),
                    notes,
                ]
            )
        )
    s = preview.summary
    print(
        f"rows={s.total_rows} clean={s.clean} duplicates={s.exact_duplicates} "
        f"similar={s.similar} issues={s.with_issues} "
        f"will_import={s.will_import} will_skip={s.will_skip}"
    )


# ---- Command handlers -----------------------------------------------------------


def cmd_init_db(*, database_url: str | None = None) -> int:
    """Create the ledger tables on the configured database (idempotent)."""

    try:
        from db.client import get_engine
        from db.models.ledger import Base

        Base.metadata.create_all(get_engine(database_url=database_url))
    except Exception as e:
        print(f"Error: database initialization failed: {e}", file=sys.stderr)
        return 1
    print("Database initialized.")
    return 0


def cmd_preview_csv(
    csv_path: str,
    *,
    database_url: str | None = None,
    date_format: str | None = None,
    types_file: str | None = None,
    identity: str = "exact",
    check_similarity: bool = True,
) -> int:
    """Print the per-row preview for a CSV without importing anything."""

    prepared = _prepare(
        csv_path, date_format=date_format, types_file=types_file, identity=identity
    )
    if prepared is None:
        return 1
    settings, rows, table = prepared

    try:
        from db.client import session_scope

        from .api import build_normalizer, prepare_rows

        with session_scope(database_url=database_url or settings.database_url) as session:
            normalizer = build_normalizer(session, settings, table=table, identity=identity)
            batch = prepare_rows(
                session,
                [r for _, r in rows],
                normalizer=normalizer,
                row_numbers=[n for n, _ in rows],
                check_similarity=check_similarity,
                similarity_threshold=settings.similarity_threshold,
                prefetch_concurrency=settings.rate_concurrency,
            )
    except Exception as e:
        print(f"Error: preview failed: {e}", file=sys.stderr)
        return 1

    _print_preview(batch.preview)
    return 0


def cmd_import_csv(
    csv_path: str,
    *,
    database_url: str | None = None,
    dry_run: bool = False,
    force_import: bool = False,
    skip_duplicates: bool = True,
    date_format: str | None = None,
    types_file: str | None = None,
    identity: str = "exact",
    check_similarity: bool = True,
) -> int:
    """Import a CSV into the ledger and print the batch summary.

    With ``dry_run`` no transactions or investments are written, but rates
    fetched from providers during conversion are committed to the rate cache.
    """

    prepared = _prepare(
        csv_path, date_format=date_format, types_file=types_file, identity=identity
    )
    if prepared is None:
        return 1
    settings, rows, table = prepared

    from .models import ImportOptions

    options = ImportOptions(
        skip_duplicates=skip_duplicates,
        force_import=force_import,
        dry_run=dry_run,
        source_file=Path(csv_path).name,
    )
    try:
        from db.client import session_scope

        from .api import build_normalizer, ingest_rows

        with session_scope(database_url=database_url or settings.database_url) as session:
            normalizer = build_normalizer(session, settings, table=table, identity=identity)
            result = ingest_rows(
                session,
                [r for _, r in rows],
                normalizer=normalizer,
                options=options,
                row_numbers=[n for n, _ in rows],
                check_similarity=check_similarity,
                similarity_threshold=settings.similarity_threshold,
                prefetch_concurrency=settings.rate_concurrency,
            )
    except Exception as e:
        print(f"Error: import failed: {e}", file=sys.stderr)
        return 1

    summary = result.summary
    numbers = [n for n, _ in rows]
    for err in summary.errors:
        print(f"row {numbers[err.index]}: {err.error}", file=sys.stderr)
    prefix = "[dry run] " if summary.dry_run else ""
    print(
        f"{prefix}total={summary.total} imported={summary.imported} "
        f"skipped={summary.skipped} failed={summary.failed}"
    )
    return 1 if summary.failed else 0


def cmd_set_rate(
    on: str,
    from_currency: str,
    to_currency: str,
    rate: str,
    *,
    database_url: str | None = None,
) -> int:
    """Store a manual exchange-rate override."""

    try:
        from db.client import session_scope

        from .rates import RateCache, SqlRateStore

        with session_scope(database_url=database_url) as session:
            cache = RateCache(SqlRateStore(session), credentials={})
            value = cache.set_manual(on, from_currency, to_currency, rate)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: failed to store rate: {e}", file=sys.stderr)
        return 1
    print(f"{on} {from_currency.upper()}/{to_currency.upper()} = {value} (manual)")
    return 0


def cmd_map_investment(raw_name: str, slug: str, *, database_url: str | None = None) -> int:
    """Record that ``raw_name`` refers to the investment with ``slug``."""

    try:
        from db.client import session_scope

        from .identity import map_investment_name

        with session_scope(database_url=database_url) as session:
            stored = map_investment_name(session, raw_name, slug)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: failed to store mapping: {e}", file=sys.stderr)
        return 1
    print(f"{raw_name} -> {stored}")
    return 0


def cmd_set_commitment(
    identifier: str,
    amount: str,
    currency: str,
    *,
    commitment_date: str | None = None,
    database_url: str | None = None,
) -> int:
    """Record commitment terms for an investment."""

    try:
        from db.client import session_scope

        from .commitments import set_commitment

        with session_scope(database_url=database_url) as session:
            status = set_commitment(
                session, identifier, amount, currency, commitment_date=commitment_date
            )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: failed to store commitment: {e}", file=sys.stderr)
        return 1
    print(
        f"{status.identifier}: commitment {status.initial_commitment} {status.committed_currency} "
        f"(called {status.called_to_date}, remaining {status.remaining})"
    )
    return 0


def cmd_complete_commitment(
    identifier: str, *, complete: bool = True, database_url: str | None = None
) -> int:
    """Set or clear the manual completion flag of a commitment."""

    try:
        from db.client import session_scope

        from .commitments import mark_commitment_complete

        with session_scope(database_url=database_url) as session:
            mark_commitment_complete(session, identifier, complete)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: failed to update commitment: {e}", file=sys.stderr)
        return 1
    print(f"{identifier}: {'complete' if complete else 'open'}")
    return 0


_COMMITMENT_HEADER = "\t".join(
    [
        "investment",
        "name",
        "currency",
        "commitment",
        "called",
        "remaining",
        "called_pct",
        "complete",
        "remaining_usd",
    ]
)


def cmd_commitment_report(
    *,
    as_of: str | None = None,
    open_only: bool = False,
    database_url: str | None = None,
) -> int:
    """Print every commitment's status and the open-commitments totals."""

    try:
        as_of_date = _parse_as_of(as_of)
        from db.client import session_scope

        from .commitments import commitment_statuses, open_commitments_summary

        with session_scope(database_url=database_url) as session:
            statuses = commitment_statuses(session, as_of=as_of_date)
            summary = open_commitments_summary(session, as_of=as_of_date)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: report failed: {e}", file=sys.stderr)
        return 1

    if open_only:
        statuses = [s for s in statuses if not s.is_complete and s.remaining > 0]
    if not statuses:
        print("No open commitments." if open_only else "No commitments recorded.")
        return 0
    print(_COMMITMENT_HEADER)
    for s in statuses:
        print(
            "\t".join(
                [
                    s.identifier,
                    s.name,
                    s.committed_currency,
                    str(s.initial_commitment),
                    str(s.called_to_date),
                    str(s.remaining),
                    f"{s.completion_pct}%",
                    "yes" if s.is_complete else "no",
                    _fmt(s.remaining_usd),
                ]
            )
        )
    print(
        f"open={summary.count} committed_usd={summary.total_committed_usd} "
        f"called_usd={summary.total_called_usd} remaining_usd={summary.total_remaining_usd}"
    )
    if summary.unconverted:
        print(f"unconverted={','.join(summary.unconverted)} (no stored USD rate)")
    return 0


def _print_metrics_row(label: str, name: str | None, metrics, count: int | None = None) -> None:
    from .metrics import format_multiple
    from .xirr import format_rate

    cols = [
        label,
        name or "",
        "" if count is None else str(count),
        f"{metrics.total_called:.2f}",
        f"{metrics.total_distributed:.2f}",
        f"{metrics.residual_value:.2f}" + ("*" if metrics.residual_is_estimated else ""),
        format_multiple(metrics.moic),
        format_multiple(metrics.dpi),
        format_multiple(metrics.rvpi),
        format_multiple(metrics.tvpi),
        format_rate(metrics.xirr),
    ]
    print("\t".join(cols))


_REPORT_HEADER = "\t".join(
    [
        "investment",
        "name",
        "rows",
        "called",
        "distributed",
        "residual",
        "moic",
        "dpi",
        "rvpi",
        "tvpi",
        "xirr",
    ]
)


def _parse_as_of(as_of: str | None):
    from datetime import date

    if as_of is None:
        return None
    return date.fromisoformat(as_of)


def cmd_investment_report(
    identifier: str,
    *,
    residual: float | None = None,
    as_of: str | None = None,
    basis: str = "usd",
    database_url: str | None = None,
) -> int:
    """Print totals, multiples and XIRR for one investment."""

    try:
        as_of_date = _parse_as_of(as_of)
        from db.client import session_scope

        from .reports import investment_report

        with session_scope(database_url=database_url) as session:
            report = investment_report(
                session, identifier, residual_value=residual, as_of=as_of_date, basis=basis
            )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: report failed: {e}", file=sys.stderr)
        return 1

    if report.transaction_count == 0:
        print(f"No transactions for investment {identifier!r}.")
        return 0
    print(_REPORT_HEADER)
    _print_metrics_row(report.identifier, report.name, report.metrics, report.transaction_count)
    if report.metrics.excluded_rows:
        print(f"excluded={report.metrics.excluded_rows} (no {basis} amount)")
    return 0


def cmd_portfolio_report(
    *,
    as_of: str | None = None,
    basis: str = "usd",
    database_url: str | None = None,
) -> int:
    """Print one line per investment plus the portfolio total."""

    try:
        as_of_date = _parse_as_of(as_of)
        from db.client import session_scope

        from .reports import portfolio_report

        with session_scope(database_url=database_url) as session:
            report = portfolio_report(session, as_of=as_of_date, basis=basis)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: report failed: {e}", file=sys.stderr)
        return 1

    print(_REPORT_HEADER)
    for inv in report.investments:
        _print_metrics_row(inv.identifier, inv.name, inv.metrics, inv.transaction_count)
    _print_metrics_row("TOTAL", None, report.total)
    if report.total.excluded_rows:
        print(f"excluded={report.total.excluded_rows}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import private-investment transaction exports into the ledger and "
        "report MOIC/DPI/RVPI/TVPI and XIRR. Loads a local .env before running."
    ),
)


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Inside ``Annotated`` the positional arguments are option names.
CSV_PATH_OPTION: OptionInfo = typer.Option(
    "--csv-path",
    help="Path to a transaction export CSV (UTF-8).",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
DATE_FORMAT_OPTION: OptionInfo = typer.Option(
    "--date-format",
    help="Preferred format for ambiguous slash dates: DD/MM/YYYY or MM/DD/YYYY.",
)
TYPES_FILE_OPTION: OptionInfo = typer.Option(
    "--types-file", help="JSON file with transaction type rules (replaces defaults)."
)
IDENTITY_OPTION: OptionInfo = typer.Option(
    "--identity",
    help="Investment identity strategy: exact (raw name) or slug (name mappings).",
)
SIMILARITY_OPTION: OptionInfo = typer.Option(
    "--similarity/--no-similarity", help="Look for near-duplicate ledger rows."
)
BASIS_OPTION: OptionInfo = typer.Option(
    "--basis", help="Amount basis: usd (converted) or original (as imported)."
)
AS_OF_OPTION: OptionInfo = typer.Option(
    "--as-of", help="Valuation date (YYYY-MM-DD); defaults to today."
)


@app.command("init-db")
def init_db_cmd(
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Create the ledger tables (use Alembic for managed deployments)."""

    _exit(cmd_init_db(database_url=database_url))


@app.command("preview-csv")
def preview_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
    date_format: Annotated[str | None, DATE_FORMAT_OPTION] = None,
    types_file: Annotated[str | None, TYPES_FILE_OPTION] = None,
    identity: Annotated[str, IDENTITY_OPTION] = "exact",
    similarity: Annotated[bool, SIMILARITY_OPTION] = True,
) -> None:
    """Show what an import would do, row by row."""

    _exit(
        cmd_preview_csv(
            str(csv_path),
            database_url=database_url,
            date_format=date_format,
            types_file=types_file,
            identity=identity,
            check_similarity=similarity,
        )
    )


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help=(
            "Report the outcome without writing transactions. "
            "Exchange rates fetched while converting are still cached."
        ),
    ),
    force_import: bool = typer.Option(
        False, "--force-import", help="Import rows that would otherwise need review."
    ),
    skip_duplicates: bool = typer.Option(
        True,
        "--skip-duplicates/--no-skip-duplicates",
        help="Skip rows whose fingerprint already exists in the ledger.",
    ),
    date_format: Annotated[str | None, DATE_FORMAT_OPTION] = None,
    types_file: Annotated[str | None, TYPES_FILE_OPTION] = None,
    identity: Annotated[str, IDENTITY_OPTION] = "exact",
    similarity: Annotated[bool, SIMILARITY_OPTION] = True,
) -> None:
    """Normalize, deduplicate and import a CSV into the ledger."""

    _exit(
        cmd_import_csv(
            str(csv_path),
            database_url=database_url,
            dry_run=dry_run,
            force_import=force_import,
            skip_duplicates=skip_duplicates,
            date_format=date_format,
            types_file=types_file,
            identity=identity,
            check_similarity=similarity,
        )
    )


@app.command("set-rate")
def set_rate_cmd(
    on: Annotated[str, typer.Argument(metavar="DATE", help="Rate date (YYYY-MM-DD).")],
    from_currency: Annotated[str, typer.Argument(metavar="FROM", help="Source currency code.")],
    to_currency: Annotated[str, typer.Argument(metavar="TO", help="Target currency code.")],
    rate: Annotated[str, typer.Argument(metavar="RATE", help="Units of TO per one FROM.")],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Store a manual exchange-rate override."""

    _exit(cmd_set_rate(on, from_currency, to_currency, rate, database_url=database_url))


@app.command("map-investment")
def map_investment_cmd(
    raw_name: Annotated[str, typer.Argument(help="Investment name as it appears in exports.")],
    slug: Annotated[str, typer.Argument(help="Canonical investment slug.")],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Map a raw investment name to a canonical slug (used with --identity slug)."""

    _exit(cmd_map_investment(raw_name, slug, database_url=database_url))


@app.command("set-commitment")
def set_commitment_cmd(
    identifier: Annotated[str, typer.Argument(help="Investment identifier.")],
    amount: Annotated[str, typer.Argument(help="Committed amount.")],
    currency: Annotated[str, typer.Argument(help="Currency capital is called in.")],
    *,
    commitment_date: Annotated[
        str | None, typer.Option("--date", help="Commitment date (YYYY-MM-DD).")
    ] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Record the commitment signed for an investment."""

    _exit(
        cmd_set_commitment(
            identifier,
            amount,
            currency,
            commitment_date=commitment_date,
            database_url=database_url,
        )
    )


@app.command("complete-commitment")
def complete_commitment_cmd(
    identifier: Annotated[str, typer.Argument(help="Investment identifier.")],
    *,
    reopen: bool = typer.Option(False, "--reopen", help="Clear the completion flag instead."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Mark a commitment as fully called, whatever the ledger says."""

    _exit(cmd_complete_commitment(identifier, complete=not reopen, database_url=database_url))


@app.command("commitment-report")
def commitment_report_cmd(
    *,
    as_of: Annotated[str | None, AS_OF_OPTION] = None,
    open_only: bool = typer.Option(False, "--open", help="Only list open commitments."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Report called and remaining capital per commitment."""

    _exit(cmd_commitment_report(as_of=as_of, open_only=open_only, database_url=database_url))


@app.command("investment-report")
def investment_report_cmd(
    identifier: Annotated[str, typer.Argument(help="Investment identifier.")],
    *,
    residual: float | None = typer.Option(
        None, "--residual", help="Current value of the position (defaults to unreturned cost)."
    ),
    as_of: Annotated[str | None, AS_OF_OPTION] = None,
    basis: Annotated[str, BASIS_OPTION] = "usd",
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Report totals, multiples and XIRR for one investment."""

    _exit(
        cmd_investment_report(
            identifier,
            residual=residual,
            as_of=as_of,
            basis=basis,
            database_url=database_url,
        )
    )


@app.command("portfolio-report")
def portfolio_report_cmd(
    *,
    as_of: Annotated[str | None, AS_OF_OPTION] = None,
    basis: Annotated[str, BASIS_OPTION] = "usd",
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Report every investment and the portfolio total."""

    _exit(cmd_portfolio_report(as_of=as_of, basis=basis, database_url=database_url))


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    app()
