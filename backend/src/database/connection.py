"""
Async engine and session management.

Services receive an ``AsyncSession`` explicitly and commit each step of a
multi-step write through ``commit_step``. The lazily created process-wide
engine here only backs the FastAPI dependency, application startup and the
background saga recovery.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.core.config import get_settings
from src.core.exceptions import ConflictError, PersistenceError
from src.core.logging import get_logger
from src.database.base import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def convert_database_url_to_async(url: str) -> str:
    """Switch a plain ``postgresql://`` URL to the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    SQLite runs without a pool; PostgreSQL gets a pre-pinged pool sized
    from settings.
    """
    settings = get_settings()
    url = convert_database_url_to_async(database_url or settings.database_url)

    engine_kwargs: dict[str, Any] = {"echo": settings.debug}
    if url.startswith("sqlite"):
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "server_settings": {"application_name": settings.app_name},
                "command_timeout": 60,
                "timeout": 10,
            },
        )

    engine = create_async_engine(url, **engine_kwargs)
    logger.info("Database engine created", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create a session factory bound to the given engine.

    Objects stay usable after commit because every step of a multi-step
    write commits on its own.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """
    Raises:
        RuntimeError: If the engine cannot be created from settings
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except (SQLAlchemyError, ValueError, ImportError) as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create async database session with automatic cleanup.

    Services commit each step themselves; this only rolls back whatever
    is left uncommitted when the block raises.
    """
    session = get_session_factory()()

    try:
        yield session
    except Exception as e:
        await session.rollback()
        logger.error(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database session injection."""
    async with get_session() as session:
        yield session


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create every mapped table, used for local SQLite runs and tests."""
    import src.database.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created", dialect=engine.dialect.name)


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Run ``SELECT 1`` with exponential backoff between attempts.

    Returns:
        True once a probe succeeds, False when every attempt failed
    """
    for attempt in range(1, max_retries + 1):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database probe failed",
                attempt=attempt,
                max_retries=max_retries,
                error=str(e),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Database probe failed",
                attempt=attempt,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        if attempt < max_retries:
            await asyncio.sleep(retry_delay * 2 ** (attempt - 1))

    return False


async def close_database_connections() -> None:
    """Dispose of the process-wide engine on shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database engine disposed")
        finally:
            _engine = None
            _session_factory = None


async def initialize_database() -> None:
    """
    Create the engine, create tables on SQLite and verify connectivity.

    PostgreSQL schemas are managed by Alembic.

    Raises:
        RuntimeError: If the database stays unreachable
    """
    settings = get_settings()
    engine = get_engine()
    get_session_factory()

    if settings.is_sqlite:
        await create_all_tables(engine)

    if not await check_database_health(max_retries=5, retry_delay=2.0):
        raise RuntimeError("Database health check failed during initialization")

    logger.info("Database initialized", dialect=engine.dialect.name)


async def commit_step(session: AsyncSession, step: str, **context: Any) -> None:
    """
    Commit one step of a multi-step write.

    Raises:
        ConflictError: If the commit violates a uniqueness constraint
        PersistenceError: If the commit fails for any other database reason
    """
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning("Commit rejected by constraint", step=step, error=str(e.orig), **context)
        raise ConflictError(
            "Write conflicts with existing data", step=step, error=str(e.orig), **context
        ) from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "Commit failed",
            step=step,
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        raise PersistenceError(
            "Database write failed", step=step, error=str(e), **context
        ) from e
