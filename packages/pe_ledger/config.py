"""Runtime settings for ``pe_ledger``.

Settings are read from environment variables once per entrypoint. The CLI
loads a local ``.env`` (python-dotenv, ``override=False``) before calling
:func:`load_settings`; library callers may construct :class:`Settings`
directly.

Environment variables
---------------------
- ``DATABASE_URL``: SQLAlchemy URL of the ledger store.
- ``EXCHANGE_RATES_API_KEY`` / ``FIXER_API_KEY``: credentials for the keyed
  rate providers. Providers without a credential are skipped.
- ``PE_LEDGER_RATE_TIMEOUT``: per-request timeout in seconds (default 10).
- ``PE_LEDGER_RATE_CONCURRENCY``: rate prefetch worker cap (default 4).
- ``PE_LEDGER_SIMILARITY_THRESHOLD``: fuzzy-duplicate score threshold
  (default 80).
- ``PE_LEDGER_DATE_FORMAT``: default slash-date format (``DD/MM/YYYY`` or
  ``MM/DD/YYYY``); unset means auto-detect.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, field_validator

from .logging_setup import get_logger

logger = get_logger("pe_ledger.config")

SUPPORTED_DATE_FORMATS: tuple[str, ...] = ("DD/MM/YYYY", "MM/DD/YYYY", "YYYY-MM-DD")


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    database_url: str | None = None
    exchange_rates_api_key: str | None = None
    fixer_api_key: str | None = None
    rate_timeout_sec: float = 10.0
    rate_concurrency: int = 4
    similarity_threshold: int = 80
    date_format: str | None = None

    @field_validator("date_format")
    @classmethod
    def _known_format(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().upper()
        if not v:
            return None
        if v not in SUPPORTED_DATE_FORMATS:
            raise ValueError(
                f"unsupported date format {v!r}; expected one of {', '.join(SUPPORTED_DATE_FORMATS)}"
            )
        return v

    @property
    def credentials(self) -> dict[str, str]:
        """Provider credentials keyed by their environment variable name."""

        out: dict[str, str] = {}
        if self.exchange_rates_api_key:
            out["EXCHANGE_RATES_API_KEY"] = self.exchange_rates_api_key
        if self.fixer_api_key:
            out["FIXER_API_KEY"] = self.fixer_api_key
        return out


def _env_number(env: Mapping[str, str], name: str, default: float, *, cast: type) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning("config:invalid_number name=%s value=%r default=%s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("config:non_positive name=%s value=%r default=%s", name, raw, default)
        return default
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from ``env`` (``os.environ`` by default).

    Invalid numeric values fall back to their defaults with a warning. An
    unsupported ``PE_LEDGER_DATE_FORMAT`` raises ``ValueError``.
    """

    src: Mapping[str, str] = os.environ if env is None else env
    defaults = Settings()

    def _opt(name: str) -> str | None:
        v = src.get(name)
        return v.strip() if v and v.strip() else None

    try:
        return Settings(
            database_url=_opt("DATABASE_URL"),
            exchange_rates_api_key=_opt("EXCHANGE_RATES_API_KEY"),
            fixer_api_key=_opt("FIXER_API_KEY"),
            rate_timeout_sec=_env_number(
                src, "PE_LEDGER_RATE_TIMEOUT", defaults.rate_timeout_sec, cast=float
            ),
            rate_concurrency=int(
                _env_number(
                    src, "PE_LEDGER_RATE_CONCURRENCY", defaults.rate_concurrency, cast=int
                )
            ),
            similarity_threshold=int(
                _env_number(
                    src,
                    "PE_LEDGER_SIMILARITY_THRESHOLD",
                    defaults.similarity_threshold,
                    cast=int,
                )
            ),
            date_format=_opt("PE_LEDGER_DATE_FORMAT"),
        )
    except ValueError as e:
        # pydantic.ValidationError is a ValueError; surface a plain message.
        raise ValueError(f"invalid pe_ledger settings: {e}") from e


__all__ = ["SUPPORTED_DATE_FORMATS", "Settings", "load_settings"]
