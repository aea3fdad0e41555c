"""
Database configuration and session management

Only the provider registry touches the database. The engine is built on
first use so the package imports cleanly when DATABASE_URL is unset and
providers come from the environment instead.
"""
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from courier_aggregator.core.config import settings
from courier_aggregator.core.exceptions import ConfigurationError

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Create the async engine on first call."""
    global _engine

    if not settings.DATABASE_URL:
        raise ConfigurationError("DATABASE_URL is not configured")

    if _engine is None:
        if settings.ENVIRONMENT == "production":
            pool_config = {
                "pool_size": settings.DB_POOL_SIZE,
                "max_overflow": settings.DB_MAX_OVERFLOW,
                "pool_recycle": settings.DB_POOL_RECYCLE,
                "pool_pre_ping": True,
            }
        else:
            pool_config = {
                "pool_size": 2,
                "max_overflow": 5,
                "pool_pre_ping": True,
            }

        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DEBUG,
            **pool_config,
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        async with get_db_session() as db:
            result = await db.execute(...)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine():
    """Dispose the engine on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
