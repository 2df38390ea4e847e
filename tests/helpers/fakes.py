"""In-memory stand-ins for the rate store and the HTTP session."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from pe_ledger.rates import CachedRate


class InMemoryRateStore:
    """Dict-backed ``RateStore``; ``upserts`` records every write in order."""

    def __init__(self, seed: Mapping[tuple[date, str, str], CachedRate] | None = None) -> None:
        self.rows: dict[tuple[date, str, str], CachedRate] = dict(seed or {})
        self.upserts: list[tuple[date, str, str, Decimal, str]] = []

    def get(self, on: date, from_currency: str, to_currency: str) -> CachedRate | None:
        return self.rows.get((on, from_currency, to_currency))

    def upsert(
        self, on: date, from_currency: str, to_currency: str, rate: Decimal, source: str
    ) -> None:
        self.rows[(on, from_currency, to_currency)] = CachedRate(rate=rate, source=source)
        self.upserts.append((on, from_currency, to_currency, rate, source))


@dataclass
class FakeResponse:
    status_code: int = 200
    payload: Any = None
    bad_json: bool = False

    def json(self) -> Any:
        if self.bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload


def rate_response(to_currency: str, rate: float | str) -> FakeResponse:
    return FakeResponse(200, {"rates": {to_currency: rate}})


type Route = FakeResponse | Exception | Callable[[str, dict[str, str]], FakeResponse]


class FakeHttp:
    """``requests.Session`` stand-in routing by URL substring.

    The first route whose key occurs in the URL answers; an ``Exception``
    route is raised, a callable route is called with ``(url, params)``.
    Unrouted URLs get a 404. Calls are recorded (thread-safe) in ``calls``.
    """

    def __init__(self, routes: Mapping[str, Route] | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def get(self, url: str, *, params: dict[str, str] | None = None, timeout: float | None = None):
        with self._lock:
            self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        for key, route in self.routes.items():
            if key in url:
                if isinstance(route, Exception):
                    raise route
                if callable(route) and not isinstance(route, FakeResponse):
                    return route(url, dict(params or {}))
                return route
        return FakeResponse(404, {"error": "not found"})

    def hosts(self) -> list[str]:
        return [c["url"].split("/")[2] for c in self.calls]
