"""
Watermark store: per-endpoint incremental progress.

``InMemoryWatermarkStore`` backs tests and dry runs;
``SqlWatermarkStore`` persists to the ``ingestion_watermarks`` table.
Both keep stored values monotonic: a write never moves a watermark back.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import WatermarkPersistenceError, WatermarkStoreError
from models.watermark import IngestionWatermark
from schemas.ingestion import Watermark, WatermarkKey

logger = logging.getLogger(__name__)


class WatermarkStore(ABC):
    """Keyed by ``(endpoint_path, source)``; a missing key reads as None."""

    @abstractmethod
    async def get(self, key: WatermarkKey) -> Optional[Watermark]:
        pass

    @abstractmethod
    async def put(self, watermark: Watermark) -> Watermark:
        """Store the watermark and return the persisted state."""
        pass

    @abstractmethod
    async def list(self) -> List[Watermark]:
        pass


class InMemoryWatermarkStore(WatermarkStore):

    def __init__(self, watermarks: Optional[List[Watermark]] = None):
        self._watermarks: Dict[WatermarkKey, Watermark] = {}
        for watermark in watermarks or []:
            self._watermarks[watermark.key] = watermark

    async def get(self, key: WatermarkKey) -> Optional[Watermark]:
        watermark = self._watermarks.get(WatermarkKey(*key))
        return watermark.model_copy() if watermark else None

    async def put(self, watermark: Watermark) -> Watermark:
        current = self._watermarks.get(watermark.key)
        if current is not None:
            # Keep values monotonic even if the caller skipped advance()
            merged = current.advance(
                last_updated_timestamp=watermark.last_updated_timestamp,
                last_numeric_id=watermark.last_numeric_id,
                at=watermark.last_ingestion_time
            )
            watermark = merged.model_copy(update={
                "total_records_loaded": watermark.total_records_loaded,
                "last_run_records": watermark.last_run_records,
            })
        self._watermarks[watermark.key] = watermark
        return watermark.model_copy()

    async def list(self) -> List[Watermark]:
        return [w.model_copy() for _, w in sorted(self._watermarks.items())]


class SqlWatermarkStore(WatermarkStore):
    """
    Watermarks in PostgreSQL.

    Writes are a single upsert; ``GREATEST`` ignores NULLs in PostgreSQL,
    so a NULL candidate keeps the stored value and a smaller one never
    replaces it.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get(self, key: WatermarkKey) -> Optional[Watermark]:
        endpoint_path, source = key
        try:
            result = await self.db.execute(
                select(IngestionWatermark).where(
                    IngestionWatermark.endpoint_path == endpoint_path,
                    IngestionWatermark.source == source
                )
            )
            row = result.scalar_one_or_none()
            watermark = Watermark.model_validate(row) if row is not None else None
            # End the read transaction; the session is shared by every endpoint of a run
            await self.db.rollback()
        except Exception as e:
            await self.db.rollback()
            raise WatermarkStoreError(
                "Failed to read watermark",
                context={
                    "endpoint": endpoint_path,
                    "source": source.value,
                    "operation": "SELECT",
                    "table_name": IngestionWatermark.__tablename__
                },
                original_exception=e
            )
        return watermark

    async def put(self, watermark: Watermark) -> Watermark:
        values = {
            "endpoint_path": watermark.endpoint_path,
            "source": watermark.source,
            "last_updated_timestamp": watermark.last_updated_timestamp,
            "last_numeric_id": watermark.last_numeric_id,
            "last_ingestion_time": watermark.last_ingestion_time,
            "total_records_loaded": watermark.total_records_loaded,
            "last_run_records": watermark.last_run_records,
        }

        stmt = insert(IngestionWatermark).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["endpoint_path", "source"],
            set_={
                "last_updated_timestamp": func.greatest(
                    IngestionWatermark.last_updated_timestamp,
                    stmt.excluded.last_updated_timestamp
                ),
                "last_numeric_id": func.greatest(
                    IngestionWatermark.last_numeric_id,
                    stmt.excluded.last_numeric_id
                ),
                "last_ingestion_time": stmt.excluded.last_ingestion_time,
                "total_records_loaded": stmt.excluded.total_records_loaded,
                "last_run_records": stmt.excluded.last_run_records,
                "updated_at": func.now(),
            }
        )

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise WatermarkPersistenceError(
                "Failed to persist watermark",
                context={
                    "endpoint": watermark.endpoint_path,
                    "source": watermark.source.value,
                    "operation": "UPSERT",
                    "table_name": IngestionWatermark.__tablename__
                },
                original_exception=e
            )

        logger.debug(
            f"Watermark for {watermark.source.value}:{watermark.endpoint_path} -> "
            f"ts={watermark.last_updated_timestamp} id={watermark.last_numeric_id}"
        )
        return watermark

    async def list(self) -> List[Watermark]:
        try:
            result = await self.db.execute(
                select(IngestionWatermark).order_by(
                    IngestionWatermark.source,
                    IngestionWatermark.endpoint_path
                )
            )
            watermarks = [Watermark.model_validate(row) for row in result.scalars().all()]
            await self.db.rollback()
        except Exception as e:
            await self.db.rollback()
            raise WatermarkStoreError(
                "Failed to list watermarks",
                context={"operation": "SELECT", "table_name": IngestionWatermark.__tablename__},
                original_exception=e
            )
        return watermarks
