"""
Health check endpoint with database and ingestion status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import ping
from api.dependencies import get_db, get_watermark_store
from core.config import settings
from core.exceptions import WatermarkStoreError
from ingestion.watermarks import WatermarkStore
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    watermark_store: WatermarkStore = Depends(get_watermark_store)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Scheduler state
    - Number of endpoints with a stored watermark and the latest ingestion time
    """

    db_connected = await ping(db)

    # Watermark summary
    endpoints_tracked = 0
    last_ingestion_time = None

    if db_connected:
        try:
            watermarks = await watermark_store.list()
            endpoints_tracked = len(watermarks)
            times = [w.last_ingestion_time for w in watermarks if w.last_ingestion_time]
            last_ingestion_time = max(times) if times else None
        except WatermarkStoreError as e:
            logger.error(f"Failed to fetch watermarks: {e.message}")

    scheduler = getattr(request.app.state, "scheduler", None)

    return HealthCheckResponse(
        environment=settings.ENVIRONMENT,
        database_connected=db_connected,
        scheduler_running=bool(scheduler and scheduler.scheduler.running),
        endpoints_tracked=endpoints_tracked,
        last_ingestion_time=last_ingestion_time
    )
