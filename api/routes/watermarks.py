"""
Watermark inspection endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from api.dependencies import get_watermark_store
from ingestion.watermarks import WatermarkStore
from models.base import SourceType
from schemas.api import WatermarkListResponse
from schemas.ingestion import Watermark, WatermarkKey
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/watermarks", tags=["Watermarks"])


@router.get("", response_model=WatermarkListResponse)
async def list_watermarks(
    request: Request,
    watermark_store: WatermarkStore = Depends(get_watermark_store)
):
    """Every stored watermark, ordered by source and endpoint."""
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] GET /watermarks")

    watermarks = await watermark_store.list()
    return WatermarkListResponse(total=len(watermarks), watermarks=watermarks)


@router.get("/{source}/{endpoint_path:path}", response_model=Watermark)
async def get_watermark(
    source: SourceType,
    endpoint_path: str,
    request: Request,
    watermark_store: WatermarkStore = Depends(get_watermark_store)
):
    """
    Watermark of one endpoint.

    ``endpoint_path`` may contain slashes, e.g. ``/watermarks/rest/invoices/booked``.
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] GET /watermarks/{source.value}/{endpoint_path}")

    watermark = await watermark_store.get(WatermarkKey(endpoint_path.strip("/"), source))
    if watermark is None:
        raise HTTPException(
            status_code=404,
            detail=f"No watermark stored for {source.value}:{endpoint_path}"
        )
    return watermark
