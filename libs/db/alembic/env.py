# ruff: noqa: I001
"""
Alembic environment for the ledger tables (investments, name mappings,
transactions and exchange rates).

`DATABASE_URL` wins over `sqlalchemy.url` from alembic.ini; a `.env` found
from the current directory upward fills it in when the shell has not.
Autogenerate compares against `db.metadata`.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from dotenv import find_dotenv, load_dotenv
from sqlalchemy import engine_from_config, pool

import db


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _ledger_url() -> str:
    env_file = find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(dotenv_path=env_file, override=False)
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError(
            "No ledger database configured: set DATABASE_URL or sqlalchemy.url in alembic.ini"
        )
    return url


LEDGER_URL = _ledger_url()
config.set_main_option("sqlalchemy.url", LEDGER_URL)


def _configure(**kwargs) -> None:
    context.configure(target_metadata=db.metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    _configure(url=LEDGER_URL, literal_binds=True)
else:
    options = dict(config.get_section(config.config_ini_section) or {})
    options["sqlalchemy.url"] = LEDGER_URL
    engine = engine_from_config(options, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        # SQLite needs batch mode to alter constraints.
        _configure(
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
        )
