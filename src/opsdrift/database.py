"""
Database configuration and connection management
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from opsdrift.config.settings import get_settings
from opsdrift.models.database import Base

logger = logging.getLogger(__name__)

_async_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None

# =============================================
# ENGINE
# =============================================

def to_async_url(url: str) -> str:
    """Map plain driver URLs onto their async drivers."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_from_settings(settings=None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(
        to_async_url(settings.database_url),
        **settings.get_database_config(),
    )


def get_async_engine() -> AsyncEngine:
    """Process-wide async engine, created on first use."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_engine_from_settings()
    return _async_engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_async_engine(),
            expire_on_commit=False,
            autoflush=False,
            class_=AsyncSession,
        )
    return _session_factory

# =============================================
# DATABASE INITIALIZATION
# =============================================

async def init_database(engine: Optional[AsyncEngine] = None):
    """Create tables if they don't exist"""
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def check_database_health(engine: Optional[AsyncEngine] = None) -> dict:
    """Run a trivial query and report connectivity."""
    engine = engine or get_async_engine()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


async def dispose_engine():
    global _async_engine, _session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _session_factory = None
