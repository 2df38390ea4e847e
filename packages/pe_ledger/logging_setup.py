"""Logging for the ``pe_ledger`` package.

Library modules only ever call :func:`get_logger` with a dotted name under
``pe_ledger`` and emit compact ``area:event key=value`` messages::

    logger = get_logger("pe_ledger.rates")
    logger.info("rates:prefetch_done requested=%d fetched=%d", n, fetched)

Until an entrypoint calls :func:`configure_logging` the package logger holds
a ``NullHandler``, so importing the pipeline into a host application prints
nothing. The CLI configures logging once per process; the level comes from
the argument, then ``PE_LEDGER_LOG_LEVEL``, then INFO.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "pe_ledger"
LEVEL_ENV_VAR = "PE_LEDGER_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_CONFIGURED = False


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or the env override when ``None``) into a numeric level.

    Accepts ints, digit strings and level names in any case; anything
    unrecognized resolves to INFO.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    if name.isdigit():
        return int(name)
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach one ``StreamHandler`` to the ``pe_ledger`` logger.

    Only the first call has an effect. Records do not propagate to the root
    logger, so a host that also configures root logging sees each line once.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    pkg = logging.getLogger(PACKAGE_LOGGER)
    for h in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(h)

    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    pkg.addHandler(handler)
    pkg.setLevel(numeric)
    pkg.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _CONFIGURED and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
