"""Alembic environment for the Beacon schema.

Migrations run over a plain sync driver (``database_url_sync``) so the
app's asyncpg URL can be shared through ``DATABASE_URL``.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

import beacon.models  # noqa: F401  registers every table on Base.metadata
from beacon.config import get_settings
from beacon.database import Base

config = context.config
settings = get_settings()

config.set_main_option("sqlalchemy.url", settings.database_url_sync)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

CONFIGURE_OPTS = {
    "target_metadata": target_metadata,
    "compare_type": True,
}


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **CONFIGURE_OPTS)
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
