"""
Create the ingestion tables and seed the endpoint catalogue.

Existing endpoint rows are left untouched so operator edits (e.g. toggling
``active``) survive a re-run; every seeded endpoint also gets an empty
watermark row.
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import create_async_engine
from core.config import settings
from core.logging import setup_logging
from ingestion.registry import DEFAULT_ENDPOINTS, build_endpoints
from models.base import Base
# Import all models to ensure they are registered
from models.endpoint import IngestionEndpoint
from models.raw_page import RawPage  # noqa: F401
from models.watermark import IngestionWatermark

logger = logging.getLogger(__name__)


def endpoint_rows():
    """Default catalogue as ``ingestion_endpoints`` rows."""
    rows = []
    for endpoint in build_endpoints(DEFAULT_ENDPOINTS):
        rows.append({
            "endpoint_path": endpoint.endpoint_path,
            "source": endpoint.source,
            "description": endpoint.description,
            "page_size": endpoint.page_size,
            "pagination": endpoint.pagination,
            "watermark_field": endpoint.watermark_field,
            "watermark_key": endpoint.watermark_key,
            "filter_field": endpoint.filter_field,
            "payload_shape": endpoint.shape.model_dump(),
            "query_params": endpoint.query_params,
            "active": endpoint.active,
        })
    return rows


async def init_database():
    logger.info("Connecting to database...")
    engine = create_async_engine(settings.DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

        rows = endpoint_rows()
        await conn.execute(
            insert(IngestionEndpoint).values(rows).on_conflict_do_nothing(
                index_elements=["endpoint_path", "source"]
            )
        )
        await conn.execute(
            insert(IngestionWatermark).values([
                {
                    "endpoint_path": row["endpoint_path"],
                    "source": row["source"],
                    "total_records_loaded": 0,
                    "last_run_records": 0,
                }
                for row in rows
            ]).on_conflict_do_nothing(index_elements=["endpoint_path", "source"])
        )
        logger.info(f"Seeded {len(rows)} endpoints and their watermarks.")

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
