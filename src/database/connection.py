"""
Database Connection Management

One async engine per process for the primary record store. The session
factory is handed to `SqlRecordSource`; nothing else opens sessions.
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

from src.config import get_settings
from src.database.models import Base

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded rows usable after commit; the sources convert them right away."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(url: Optional[str] = None, create_tables: bool = False) -> AsyncEngine:
    """
    Create the engine and check the primary store once.

    An unreachable database is logged, not raised: reads fall back to the
    mirror and writes fail with SourceUnavailableError until it is back.

    Args:
        url: Override the configured connection URL
        create_tables: Create missing tables (development and tests)
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    settings = get_settings()
    # asyncpg keeps its own connections; the gateway timeout bounds each call
    _engine = create_async_engine(
        url or settings.database.async_url,
        echo=settings.database.echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )
    _session_factory = build_session_factory(_engine)

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("Primary store unreachable at startup", host=settings.database.host, error=str(e))
    else:
        logger.info("Primary store connected", host=settings.database.host, database=settings.database.db)

    return _engine


async def close_database() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Primary store engine disposed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_factory
