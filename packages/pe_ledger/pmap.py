"""Bounded, order-preserving concurrent map over a thread pool.

A small ``p-map`` style helper used for I/O-bound fan-out (rate prefetch).
``p_map`` keeps at most ``concurrency`` mapper calls in flight, returns results
in input order and propagates the first mapper error after cancelling work
that has not started yet. Mappers that want to drop an element return
``p_map_skip``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` calls in flight."""

    if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = enumerate(iterable)
    results: dict[int, OutT | object] = {}
    pending: dict[Future, int] = {}

    with ThreadPoolExecutor(max_workers=concurrency) as pool:

        def _top_up() -> None:
            while len(pending) < concurrency:
                try:
                    idx, item = next(items)
                except StopIteration:
                    return
                pending[pool.submit(mapper, item)] = idx

        _top_up()
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception:
                    for other in pending:
                        other.cancel()
                    raise
            _top_up()

    return [results[i] for i in sorted(results) if results[i] is not p_map_skip]  # type: ignore[misc]


__all__ = ["p_map", "p_map_skip"]
