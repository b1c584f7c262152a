"""Alembic environment for podsync's SQLite database.

The database URL comes from the ``DATABASE_URL`` environment variable when
set, otherwise from ``sqlalchemy.url`` in alembic.ini. ``aiosqlite`` URLs run
through an async engine; plain ``sqlite`` URLs (used by the test helper) run
synchronously. Migrations use batch mode so column changes work on SQLite.
"""

import asyncio
from logging.config import fileConfig
import os

from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from alembic import context

# Registers every table with SQLModel.metadata for autogenerate.
from podsync.db import types as db_types

_ = db_types

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = SQLModel.metadata


def _database_url() -> str:
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise ValueError(
            "Database URL is not configured. Set sqlalchemy.url in alembic.ini or DATABASE_URL env var."
        )
    return url


def run_migrations_offline() -> None:
    """Emit migration SQL without connecting to a database."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_for_context(connection: Connection) -> None:
    """Run migrations on an open connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations(connectable_config: dict[str, str]) -> None:
    """Run migrations through an async engine."""
    async_engine = async_engine_from_config(
        connectable_config,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with async_engine.connect() as connection:
        await connection.run_sync(run_migrations_for_context)
    await async_engine.dispose()


def run_migrations_online() -> None:
    """Connect to the database and run migrations."""
    connectable_config = config.get_section(config.config_ini_section) or {}
    connectable_config["sqlalchemy.url"] = url = _database_url()

    if "aiosqlite" in url:
        asyncio.run(run_async_migrations(connectable_config))
    else:
        engine = engine_from_config(
            connectable_config, prefix="sqlalchemy.", poolclass=pool.NullPool
        )
        with engine.connect() as connection:
            run_migrations_for_context(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
