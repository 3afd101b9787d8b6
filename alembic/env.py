"""Alembic environment for the sync ledger.

Migrations run over a synchronous connection: the async driver in
DATABASE_URL is swapped for its sync counterpart (asyncpg -> psycopg,
aiosqlite -> the stdlib sqlite3 driver).
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from src.dialer_sync.config import get_settings
from src.dialer_sync.core.database import Base
from src.dialer_sync.sync import models  # noqa: F401

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _sync_url() -> str:
    url = get_settings().DATABASE_URL
    return url.replace("+asyncpg", "+psycopg").replace("+aiosqlite", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
