"""Pytest configuration for test isolation.

The ledger code reads its database URL, provider API keys and tuning knobs
from the process environment, and ``db.client`` keeps one shared engine per
process. Either leaking between tests makes results depend on test order
(a test could silently talk to another test's SQLite file, or to a real rate
provider with a developer's key).

Every test therefore starts with those variables removed and with no shared
engine; the engine is disposed again afterwards so SQLite files under
``tmp_path`` are released.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
# Workspace packages resolve ahead of anything installed.
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

from db.client import dispose_engine  # noqa: E402

_ISOLATED_ENV = (
    "DATABASE_URL",
    "EXCHANGE_RATES_API_KEY",
    "FIXER_API_KEY",
    "PE_LEDGER_LOG_LEVEL",
    "PE_LEDGER_RATE_TIMEOUT",
    "PE_LEDGER_RATE_CONCURRENCY",
    "PE_LEDGER_SIMILARITY_THRESHOLD",
    "PE_LEDGER_DATE_FORMAT",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip ledger configuration from the environment and reset the shared engine."""

    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    dispose_engine()
    yield
    dispose_engine()
