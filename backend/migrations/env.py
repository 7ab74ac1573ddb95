"""
Alembic environment for the engine schema.

The database URL always comes from application settings (APP_DATABASE_URL),
never from alembic.ini. Online migrations run through an async engine:
asyncpg for PostgreSQL, aiosqlite for SQLite with batch mode so ALTERs work.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from src.core.config import get_settings
from src.core.logging import get_logger
from src.database.connection import convert_database_url_to_async

# Importing the package registers every model with Base.metadata
from src.database.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = get_logger(__name__)
target_metadata = Base.metadata

database_url = convert_database_url_to_async(get_settings().database_url)
config.set_main_option("sqlalchemy.url", database_url)


def configure_context(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the configured dialect without connecting."""
    logger.info("Generating migration SQL", dialect=database_url.split(":", 1)[0])
    configure_context(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    configure_context(
        connection=connection,
        render_as_batch=connection.dialect.name == "sqlite",
        transaction_per_migration=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Apply migrations over one unpooled async connection."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(
            "Migration failed",
            dialect=connectable.dialect.name,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()

    logger.info("Migrations applied", dialect=connectable.dialect.name)


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
