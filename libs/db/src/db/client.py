"""Engine and session helpers for the ledger database.

One engine is shared per process and bound to a single URL, taken from the
``database_url`` argument or ``DATABASE_URL``::

    from db.client import session_scope

    with session_scope() as session:
        session.add(LedgerTransaction(...))

On SQLite the driver's implicit transaction handling is replaced with explicit
``BEGIN`` statements and foreign keys are switched on. The importer relies on
``Session.begin_nested()`` savepoints to isolate failing rows, and those only
nest correctly once pysqlite stops opening transactions on its own.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


@dataclass(slots=True)
class _Bound:
    url: str
    engine: Engine
    factory: sessionmaker[Session]


_bound: _Bound | None = None


def _resolve_url(explicit: str | None) -> str:
    url = explicit or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot open the ledger database")
    return url


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _connect(dbapi_conn, _record):  # pragma: no cover - driver glue
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):  # pragma: no cover - driver glue
        conn.exec_driver_sql("BEGIN")


def _bind(url: str) -> _Bound:
    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    return _Bound(url=url, engine=engine, factory=factory)


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the process-wide engine, creating it on first use.

    Asking for a different URL once an engine exists is an error; call
    :func:`dispose_engine` first to switch databases.
    """

    global _bound
    url = _resolve_url(database_url)
    if _bound is None:
        _bound = _bind(url)
    elif _bound.url != url:
        raise RuntimeError(
            f"ledger engine is bound to a different database; "
            f"dispose_engine() before opening {url!r}"
        )
    return _bound.engine


def dispose_engine() -> None:
    global _bound
    if _bound is not None:
        _bound.engine.dispose()
    _bound = None


def get_session(*, database_url: str | None = None) -> Session:
    get_engine(database_url=database_url)
    assert _bound is not None
    return _bound.factory()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["dispose_engine", "get_engine", "get_session", "session_scope"]
