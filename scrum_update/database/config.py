"""Database configuration and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from scrum_update.core.config import settings
from scrum_update.core.logging import get_logger

logger = get_logger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """Get the async database URL from settings.

    Plain ``postgres://`` / ``postgresql://`` URLs are rewritten for asyncpg.
    """
    database_url = settings.database.url

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, enabling foreign keys for SQLite.

    Args:
        database_url: Async SQLAlchemy URL.
        echo: Echo SQL statements.

    Returns:
        SQLAlchemy async engine instance.
    """
    is_sqlite = database_url.startswith("sqlite")
    kwargs: dict[str, Any] = {"echo": echo}
    if not is_sqlite:
        kwargs.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,
        )

    engine = create_async_engine(database_url, **kwargs)

    if is_sqlite:
        # SQLite only honours ON DELETE CASCADE with this pragma
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used by the stores."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_engine() -> AsyncEngine:
    """Get or create the async database engine.

    Returns:
        SQLAlchemy async engine instance.
    """
    global _engine

    if _engine is None:
        database_url = get_database_url()
        logger.info("Creating database engine", url=_mask_password(database_url))
        _engine = create_engine_for_url(database_url, echo=settings.database.echo)

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory.

    Returns:
        SQLAlchemy async session factory.
    """
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_async_engine())

    return _session_factory


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on error.

    Yields:
        AsyncSession instance.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database tables.

    Creates all tables defined in the models.
    """
    from .models import Base

    engine = engine or get_async_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized")


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connections closed")


def _mask_password(url: str) -> str:
    """Mask password in database URL for logging."""
    if "@" in url and "://" in url:
        protocol, rest = url.split("://", 1)
        if "@" in rest:
            credentials, host_part = rest.rsplit("@", 1)
            if ":" in credentials:
                user, _ = credentials.split(":", 1)
                return f"{protocol}://{user}:***@{host_part}"
    return url
