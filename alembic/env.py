"""Alembic environment for the contact sync schema.

Runs migrations over a synchronous psycopg2 engine derived from the async
DATABASE_URL. Autogenerate compares against Base.metadata with every model
module imported.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

import src.contact_sync.contacts.models  # noqa: F401
import src.contact_sync.integrations.models  # noqa: F401
from src.contact_sync.config import get_settings
from src.contact_sync.core.database import Base

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    connectable = create_engine(url, poolclass=pool.NullPool)

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
