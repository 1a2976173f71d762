"""
Database Connection Management

Async engine lifecycle for workflow runs and the session factory the
aggregate store writes through (SQLAlchemy 2.0).
"""

from typing import Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ..config import get_settings
from .models import Base

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the aggregate store"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(url: Optional[str] = None, create_tables: bool = False) -> AsyncEngine:
    """
    Create the process-wide engine and check that the database answers.

    Args:
        url: Async database URL; defaults to the configured PostgreSQL URL
        create_tables: Create missing tables (local runs and tests)

    Returns:
        The engine; a second call returns the engine already created
    """
    global _engine

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()

    # AsyncPG handles its own connection pooling internally
    engine = create_async_engine(
        url or settings.database.async_url,
        echo=settings.database.echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("Failed to connect to database", dialect=engine.dialect.name, error=str(e))
        await engine.dispose()
        raise

    logger.info(
        "Database connection established",
        dialect=engine.dialect.name,
        create_tables=create_tables,
    )
    _engine = engine
    return _engine


async def close_database() -> None:
    """Dispose of the engine created by ``init_database``, if any"""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database engine disposed")
