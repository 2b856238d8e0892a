"""
Database engine and session factory (SQLAlchemy async, asyncpg driver).

A sync run opens one session per store (see ``ingestion.runner.run_sync``)
so a rollback in the sink never discards a committed watermark; the API
gets one session per request through ``get_session``.
"""

from typing import AsyncGenerator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Runs are short and a few hours apart; no pooled connections in between
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    poolclass=NullPool
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request"""
    async with async_session_maker() as session:
        yield session


async def ping(session: AsyncSession) -> bool:
    """True when the database answers ``SELECT 1``; failures are logged."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
    return True
