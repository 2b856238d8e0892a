"""
FastAPI dependencies: database session and the stores built on it
"""

from typing import Awaitable, Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from ingestion.registry import EndpointRegistry, SqlEndpointRegistry
from ingestion.runner import run_sync
from ingestion.watermarks import SqlWatermarkStore, WatermarkStore
from models.base import SourceType, SyncMode
from schemas.ingestion import SyncReport

SyncRunner = Callable[[SourceType, SyncMode], Awaitable[SyncReport]]


# Database session per request
get_db = get_session


def get_watermark_store(db: AsyncSession = Depends(get_db)) -> WatermarkStore:
    return SqlWatermarkStore(db)


def get_registry(db: AsyncSession = Depends(get_db)) -> EndpointRegistry:
    return SqlEndpointRegistry(db)


def get_sync_runner() -> SyncRunner:
    """Sync runs open their own sessions; see ingestion.runner.run_sync"""
    return run_sync
