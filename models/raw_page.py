from sqlalchemy import Column, String, BigInteger, Integer, Enum, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB, UUID
from datetime import datetime, timezone
from models.base import Base, SourceType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawPage(Base):
    """
    Landing zone: one immutable row per API response page.

    Purpose:
    - Durable record of exactly what each API returned
    - Input for the downstream field-extraction layer, which owns
      deduplication of business entities

    Design Decisions:
    - Append-only; rows are never updated
    - payload is the whole response document; its top-level shape
      (collection / items / named array) depends on the endpoint family
    - (endpoint_path, run_id, page_number) is naturally unique
    """
    __tablename__ = "raw_pages"

    id = Column(BigInteger, primary_key=True, autoincrement=True)

    ingested_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    source = Column(Enum(SourceType), nullable=False)
    endpoint_path = Column(String(255), nullable=False)
    run_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    record_count = Column(Integer, nullable=False, default=0)

    payload = Column(JSONB, nullable=False)

    __table_args__ = (
        Index("idx_raw_pages_run_page", "endpoint_path", "run_id", "page_number", unique=True),
        Index("idx_raw_pages_source_endpoint", "source", "endpoint_path", "ingested_at"),
    )
