"""
Raw payload sink: append-only landing for API response pages.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import SinkError
from models.base import SourceType
from models.raw_page import RawPage
from schemas.ingestion import FetchedPage, StoredPage, utcnow

logger = logging.getLogger(__name__)


class RawPayloadSink(ABC):

    @abstractmethod
    async def append(self, page: FetchedPage, run_id: UUID) -> StoredPage:
        """Persist one page durably before returning."""
        pass

    @abstractmethod
    async def clear(self, source: SourceType) -> int:
        """Delete every stored page of a source; returns the number removed."""
        pass


class InMemoryRawPayloadSink(RawPayloadSink):

    def __init__(self, pages: Optional[List[StoredPage]] = None):
        self.pages: List[StoredPage] = list(pages or [])

    async def append(self, page: FetchedPage, run_id: UUID) -> StoredPage:
        stored = StoredPage(**page.model_dump(), run_id=run_id, ingested_at=utcnow())
        self.pages.append(stored)
        return stored

    async def clear(self, source: SourceType) -> int:
        kept = [p for p in self.pages if p.source != source]
        removed = len(self.pages) - len(kept)
        self.pages = kept
        return removed

    def pages_for(self, endpoint_path: str, source: Optional[SourceType] = None) -> List[StoredPage]:
        return [
            p for p in self.pages
            if p.endpoint_path == endpoint_path and (source is None or p.source == source)
        ]


class SqlRawPayloadSink(RawPayloadSink):
    """
    Pages in the ``raw_pages`` table.

    Each append commits on its own so a crash mid-endpoint keeps every
    page fetched so far.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def append(self, page: FetchedPage, run_id: UUID) -> StoredPage:
        ingested_at = utcnow()
        row = RawPage(
            ingested_at=ingested_at,
            source=page.source,
            endpoint_path=page.endpoint_path,
            run_id=run_id,
            page_number=page.page_number,
            record_count=page.record_count,
            payload=page.payload
        )

        try:
            self.db.add(row)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise SinkError(
                "Failed to persist raw page",
                context={
                    "operation": "INSERT",
                    "table_name": RawPage.__tablename__,
                    "endpoint": page.endpoint_path,
                    "page_number": page.page_number,
                    "run_id": str(run_id)
                },
                original_exception=e
            )

        return StoredPage(**page.model_dump(), run_id=run_id, ingested_at=ingested_at)

    async def clear(self, source: SourceType) -> int:
        try:
            result = await self.db.execute(delete(RawPage).where(RawPage.source == source))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise SinkError(
                "Failed to clear raw pages",
                context={
                    "operation": "DELETE",
                    "table_name": RawPage.__tablename__,
                    "source": source.value
                },
                original_exception=e
            )

        removed = result.rowcount or 0
        logger.info(f"Cleared {removed} raw pages for {source.value}")
        return removed
