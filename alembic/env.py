"""
alembic.env

Alembic migration environment for the batu schema.

Responsibilities:
- Expose `batu.db.models` metadata for autogeneration.
- Run migrations offline (SQL script) or online (live connection).

Notes:
- Executed by Alembic, never imported by the API process.
- The runtime uses async drivers; migrations run on the matching sync driver.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

from batu.db.base import Base
from batu.db import models  # noqa: F401  # registers tables on Base.metadata
from batu.settings import Settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_SYNC_DRIVERS = {
    "sqlite+aiosqlite": "sqlite",
    "postgresql+asyncpg": "postgresql+psycopg",
}


def _get_database_url() -> str:
    url = os.environ.get("BATU_DATABASE_URL") or Settings().database_url
    parsed = make_url(url)
    sync = _SYNC_DRIVERS.get(parsed.drivername)
    if sync is None:
        return url
    return parsed.set(drivername=sync).render_as_string(hide_password=False)


def run_migrations_offline() -> None:
    context.configure(
        url=_get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = _get_database_url()
    connectable = engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
