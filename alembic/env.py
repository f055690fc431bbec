"""Alembic environment for the call log schema."""
from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context

from supportline.db.models import Base
from supportline.core.config import settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Migrations run on the synchronous drivers
SYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql://",
    "sqlite+aiosqlite://": "sqlite://",
}


def sync_database_url() -> str:
    url = settings.database_url
    for async_prefix, sync_prefix in SYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return url.replace(async_prefix, sync_prefix, 1)
    return url


def run_migrations_offline() -> None:
    """Emit the call log DDL as SQL without a database connection."""
    context.configure(
        url=sync_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply the call log migrations to the configured database."""
    connectable = engine_from_config(
        {"sqlalchemy.url": sync_database_url()},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
