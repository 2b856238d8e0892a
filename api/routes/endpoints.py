"""
Endpoint registry listing
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from api.dependencies import get_registry
from ingestion.registry import EndpointRegistry
from models.base import SourceType
from schemas.api import EndpointListResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Endpoints"])


@router.get("/endpoints", response_model=EndpointListResponse)
async def list_endpoints(
    source: Optional[SourceType] = Query(None, description="Filter by source"),
    active_only: bool = Query(False, description="Only endpoints included in syncs"),
    registry: EndpointRegistry = Depends(get_registry)
):
    """Configured endpoints with their resolved pagination and payload shape."""
    endpoints = await registry.list_all(source)
    if active_only:
        endpoints = [e for e in endpoints if e.active]

    return EndpointListResponse(
        total=len(endpoints),
        active=sum(1 for e in endpoints if e.active),
        endpoints=endpoints
    )
