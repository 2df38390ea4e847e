# ruff: noqa: I001
"""Currency rate cache backed by the ledger store and external providers.

``RateCache.rate(on, from, to)`` resolves a conversion rate as follows:

1. Same currency: ``Decimal(1)`` with no I/O.
2. Exact ``(date, from, to)`` hit in the injected :class:`RateStore`.
3. Otherwise each configured :class:`RateProvider` is tried in order.
   Providers whose credential is missing are skipped. Rate limiting (HTTP
   429), any non-2xx status, transport errors, timeouts, malformed JSON or a
   missing rate all advance to the next provider.
4. The first successful rate is upserted with ``source="api"`` and returned.
   When every provider fails the result is ``None`` and nothing is cached.

Manual overrides (``source="manual"``) are plain upserts too: the last write
wins for a key regardless of source.

HTTP goes through a ``requests.Session`` whose urllib3 ``Retry`` only
re-attempts connection failures and 5xx responses; a 429 is returned
immediately so the chain can move on.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import requests
from requests.adapters import HTTPAdapter
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from urllib3.util.retry import Retry

from db.models.ledger import ExchangeRate
from .logging_setup import get_logger
from .persistence import dialect_insert
from .pmap import p_map, p_map_skip

logger = get_logger("pe_ledger.rates")

ONE = Decimal(1)
RATE_SOURCES: frozenset[str] = frozenset({"api", "manual"})


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CachedRate:
    rate: Decimal
    source: str


class RateStore(Protocol):
    def get(self, on: date, from_currency: str, to_currency: str) -> CachedRate | None: ...

    def upsert(
        self, on: date, from_currency: str, to_currency: str, rate: Decimal, source: str
    ) -> None: ...


class SqlRateStore:
    """:class:`RateStore` over ``ledger_exchange_rates`` using the caller's session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, on: date, from_currency: str, to_currency: str) -> CachedRate | None:
        row = self._session.execute(
            select(ExchangeRate.rate, ExchangeRate.source).where(
                ExchangeRate.date == on,
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
            )
        ).first()
        if row is None:
            return None
        return CachedRate(rate=Decimal(row.rate), source=row.source)

    def upsert(
        self, on: date, from_currency: str, to_currency: str, rate: Decimal, source: str
    ) -> None:
        stmt = dialect_insert(self._session, ExchangeRate).values(
            date=on,
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate,
            source=source,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                ExchangeRate.date,
                ExchangeRate.from_currency,
                ExchangeRate.to_currency,
            ],
            set_={
                "rate": stmt.excluded.rate,
                "source": stmt.excluded.source,
                "updated_at": func.now(),
            },
        )
        self._session.execute(stmt)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RateProvider:
    """One external rate API: ``GET url_template.format(date=...)`` with query params."""

    name: str
    url_template: str
    base_param: str = "base"
    symbols_param: str = "symbols"
    credential_env: str | None = None
    credential_param: str = "access_key"

    def request_for(
        self, on: date, from_currency: str, to_currency: str, credential: str | None
    ) -> tuple[str, dict[str, str]]:
        params = {self.base_param: from_currency, self.symbols_param: to_currency}
        if self.credential_env is not None and credential:
            params[self.credential_param] = credential
        return self.url_template.format(date=on.isoformat()), params


DEFAULT_PROVIDERS: tuple[RateProvider, ...] = (
    RateProvider(
        name="frankfurter",
        url_template="https://api.frankfurter.app/{date}",
        base_param="from",
        symbols_param="to",
    ),
    RateProvider(
        name="exchangeratesapi",
        url_template="http://api.exchangeratesapi.io/v1/{date}",
        credential_env="EXCHANGE_RATES_API_KEY",
    ),
    RateProvider(
        name="fixer",
        url_template="https://data.fixer.io/api/{date}",
        credential_env="FIXER_API_KEY",
    ),
)


def build_http_session(*, retries: int = 2, backoff_factor: float = 0.5) -> requests.Session:
    """``requests.Session`` retrying connection errors and 5xx, never 429."""

    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
        respect_retry_after_header=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def parse_rate_payload(payload: Any, to_currency: str) -> Decimal | None:
    """Extract ``payload["rates"][to_currency]`` as a positive ``Decimal``."""

    if not isinstance(payload, Mapping):
        return None
    if payload.get("success") is False:
        return None
    rates = payload.get("rates")
    if not isinstance(rates, Mapping):
        return None
    raw = rates.get(to_currency)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


def _as_date(on: date | str) -> date | None:
    if isinstance(on, date):
        return on
    try:
        return date.fromisoformat(str(on).strip())
    except ValueError:
        return None


def _code(value: str) -> str:
    return str(value).strip().upper()


@dataclass(frozen=True, slots=True)
class PrefetchStats:
    requested: int = 0
    cached: int = 0
    fetched: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class RateCache:
    """Rate lookup with a persisted cache in front of a provider fallback chain.

    Parameters
    ----------
    store:
        Cache backend. :class:`SqlRateStore` in production; tests inject an
        in-memory fake.
    providers:
        Ordered provider chain (defaults to frankfurter, exchangeratesapi,
        fixer).
    http:
        Object with a ``requests``-compatible ``get(url, params=, timeout=)``.
        Defaults to :func:`build_http_session`.
    credentials:
        Provider credentials keyed by ``credential_env``. When ``None`` they
        are read from the process environment.
    timeout:
        Per-request timeout in seconds. A timeout counts as provider failure.
    """

    def __init__(
        self,
        store: RateStore,
        *,
        providers: Iterable[RateProvider] = DEFAULT_PROVIDERS,
        http: Any | None = None,
        credentials: Mapping[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._providers = tuple(providers)
        self._http = http if http is not None else build_http_session()
        if credentials is None:
            credentials = {
                p.credential_env: os.environ[p.credential_env]
                for p in self._providers
                if p.credential_env and os.environ.get(p.credential_env)
            }
        self._credentials = dict(credentials)
        self._timeout = timeout

    def rate(self, on: date | str, from_currency: str, to_currency: str) -> Decimal | None:
        """Return the ``from_currency`` → ``to_currency`` rate on ``on``, or ``None``."""

        src, dst = _code(from_currency), _code(to_currency)
        if src == dst:
            return ONE
        day = _as_date(on)
        if day is None or not src or not dst:
            return None

        cached = self._store.get(day, src, dst)
        if cached is not None:
            return cached.rate

        fetched = self.fetch(day, src, dst)
        if fetched is None:
            return None
        self._store.upsert(day, src, dst, fetched, "api")
        return fetched

    def fetch(self, on: date, from_currency: str, to_currency: str) -> Decimal | None:
        """Walk the provider chain without touching the store."""

        for provider in self._providers:
            credential = None
            if provider.credential_env is not None:
                credential = self._credentials.get(provider.credential_env)
                if not credential:
                    logger.debug(
                        "rates:provider_skipped provider=%s reason=no_credential", provider.name
                    )
                    continue
            value = self._fetch_one(provider, on, from_currency, to_currency, credential)
            if value is not None:
                logger.debug(
                    "rates:fetched provider=%s date=%s pair=%s/%s rate=%s",
                    provider.name,
                    on.isoformat(),
                    from_currency,
                    to_currency,
                    value,
                )
                return value
        logger.warning(
            "rates:all_providers_failed date=%s pair=%s/%s",
            on.isoformat(),
            from_currency,
            to_currency,
        )
        return None

    def _fetch_one(
        self,
        provider: RateProvider,
        on: date,
        from_currency: str,
        to_currency: str,
        credential: str | None,
    ) -> Decimal | None:
        url, params = provider.request_for(on, from_currency, to_currency, credential)
        try:
            resp = self._http.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            logger.info("rates:fetch_failed provider=%s error=%s", provider.name, type(e).__name__)
            return None
        if resp.status_code == 429:
            logger.info("rates:rate_limited provider=%s", provider.name)
            return None
        if not 200 <= resp.status_code < 300:
            logger.info("rates:fetch_failed provider=%s status=%s", provider.name, resp.status_code)
            return None
        try:
            payload = resp.json()
        except ValueError:
            logger.info("rates:bad_json provider=%s", provider.name)
            return None
        value = parse_rate_payload(payload, to_currency)
        if value is None:
            logger.info("rates:missing_rate provider=%s to=%s", provider.name, to_currency)
        return value

    def set_manual(
        self, on: date | str, from_currency: str, to_currency: str, rate: Decimal | float | str
    ) -> Decimal:
        """Write an operator-supplied rate (``source="manual"``) and return it.

        Raises ``ValueError`` for an unparseable date, identical currencies or a
        non-positive rate.
        """

        day = _as_date(on)
        if day is None:
            raise ValueError(f"invalid rate date: {on!r}")
        src, dst = _code(from_currency), _code(to_currency)
        if not src or not dst or src == dst:
            raise ValueError(f"invalid currency pair: {from_currency!r}/{to_currency!r}")
        try:
            value = Decimal(str(rate))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"invalid rate: {rate!r}") from e
        if not value.is_finite() or value <= 0:
            raise ValueError(f"rate must be positive: {rate!r}")
        self._store.upsert(day, src, dst, value, "manual")
        logger.info("rates:manual_override date=%s pair=%s/%s rate=%s", day, src, dst, value)
        return value

    def prefetch(
        self,
        keys: Iterable[tuple[date | str, str, str]],
        *,
        concurrency: int = 4,
    ) -> PrefetchStats:
        """Warm the cache for many keys.

        Store reads and writes stay on the calling thread; only provider
        requests run concurrently (at most ``concurrency`` at once).
        """

        unique: list[tuple[date, str, str]] = []
        seen: set[tuple[date, str, str]] = set()
        for on, src_raw, dst_raw in keys:
            day = _as_date(on)
            src, dst = _code(src_raw), _code(dst_raw)
            if day is None or not src or not dst or src == dst:
                continue
            key = (day, src, dst)
            if key not in seen:
                seen.add(key)
                unique.append(key)

        missing = [k for k in unique if self._store.get(*k) is None]
        cached = len(unique) - len(missing)

        def _fetch(key: tuple[date, str, str]) -> object:
            value = self.fetch(*key)
            return p_map_skip if value is None else (key, value)

        found = p_map(missing, _fetch, concurrency=concurrency) if missing else []
        for (day, src, dst), value in found:
            self._store.upsert(day, src, dst, value, "api")

        stats = PrefetchStats(
            requested=len(unique),
            cached=cached,
            fetched=len(found),
            failed=len(missing) - len(found),
        )
        logger.info(
            "rates:prefetch_done requested=%d cached=%d fetched=%d failed=%d",
            stats.requested,
            stats.cached,
            stats.fetched,
            stats.failed,
        )
        return stats


__all__ = [
    "CachedRate",
    "DEFAULT_PROVIDERS",
    "PrefetchStats",
    "RATE_SOURCES",
    "RateCache",
    "RateProvider",
    "RateStore",
    "SqlRateStore",
    "build_http_session",
    "parse_rate_payload",
]
