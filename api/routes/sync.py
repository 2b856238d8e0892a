"""
Manual sync trigger
"""

from fastapi import APIRouter, Depends, Query, Request
from api.dependencies import SyncRunner, get_sync_runner
from models.base import SourceType, SyncMode
from schemas.api import SyncResponse
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Sync"])


@router.post("/sync/{source}", response_model=SyncResponse)
async def trigger_sync(
    source: SourceType,
    request: Request,
    mode: SyncMode = Query(SyncMode.INCREMENTAL, description="full or incremental"),
    run_sync: SyncRunner = Depends(get_sync_runner)
):
    """
    Run one sync of ``source`` and wait for it to finish.

    Endpoint failures are part of the report; the response is 200 unless
    the request itself is invalid.
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] POST /sync/{source.value} mode={mode.value}")

    report = await run_sync(source, mode)
    return SyncResponse.from_report(report)
