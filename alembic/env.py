"""Alembic environment for the reviewflow schema.

The target URL comes from ``-x database_url=...`` when given, otherwise
from ``ReviewflowConfig`` (TOML file plus ``REVIEWFLOW_DATABASE__URL``).
Migrations run through the async engine, so the same URLs work here as in
the application: asyncpg in production, aiosqlite for local checks.
"""

from __future__ import annotations

import asyncio

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from reviewflow.config import load_config
from reviewflow.database.models import Base
from reviewflow.logging import get_logger, setup_logging

VERSION_TABLE = "reviewflow_alembic_version"

alembic_config = context.config
reviewflow_config = load_config()
setup_logging(reviewflow_config.logging)
logger = get_logger(__name__).bind(component="Migrations")

target_metadata = Base.metadata


def resolve_database_url() -> str:
    """Pick the migration target, preferring the ``-x`` override."""
    overrides = context.get_x_argument(as_dictionary=True)
    return overrides.get("database_url") or reviewflow_config.database.url


def _configure(**kwargs) -> None:
    url = kwargs.pop("url", None) or resolve_database_url()
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        # SQLite cannot ALTER constraints in place
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    url = resolve_database_url()
    logger.info("migrations_offline", dialect=url.split(":", 1)[0])
    _configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(
        url=str(connection.engine.url),
        connection=connection,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    url = resolve_database_url()
    engine = create_async_engine(url, poolclass=pool.NullPool)
    logger.info("migrations_online", dialect=engine.dialect.name)

    try:
        async with engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
