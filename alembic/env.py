import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from schoolhub.database import db_url, connect_args
from schoolhub.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Every table of the tenant schema, registered by importing schoolhub.models
target_metadata = Base.metadata


def run_migrations_offline():
    """Emit SQL for the schoolhub schema without connecting to PostgreSQL."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def apply_migrations(connection):
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    """Migrate through asyncpg with the same URL and SSL options the API uses."""
    engine = create_async_engine(db_url, poolclass=pool.NullPool, connect_args=connect_args)
    async with engine.connect() as connection:
        await connection.run_sync(apply_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
