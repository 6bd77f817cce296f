"""
Guardian Angel - Database Connection
====================================

One async engine per process. Request handlers get a session through the
get_db dependency; scripts and startup code use get_db_session. Both
commit when the block finishes and roll back when it raises, so a
timeline store or migrator only has to flush.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from guardian.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# ==========================================================================
# Engine Setup
# ==========================================================================

def engine_options() -> dict[str, Any]:
    """Keyword arguments for create_async_engine under the current settings."""
    options: dict[str, Any] = {"echo": settings.DATABASE_ECHO}
    if settings.is_sqlite:
        # Local single-file database: no pool sizing, shared across threads
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return options


engine: AsyncEngine = create_async_engine(settings.DATABASE_URL, **engine_options())

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==========================================================================
# Sessions
# ==========================================================================

@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one unit of work, committed on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_db_session() as session:
        yield session


async def ping_db(session: Optional[AsyncSession] = None) -> bool:
    """True if the database answers a trivial query."""
    try:
        if session is not None:
            await session.execute(text("SELECT 1"))
        else:
            async with get_db_session() as own:
                await own.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Database ping failed: {e}")
        return False
    return True


# ==========================================================================
# Lifecycle
# ==========================================================================

async def init_db() -> None:
    """Create missing tables. PostgreSQL deployments also carry Alembic revisions."""
    # Registers every table on Base.metadata
    from guardian.core import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready: {len(Base.metadata.tables)} tables")


async def close_db() -> None:
    await engine.dispose()
