from sqlalchemy import Column, String, Enum, DateTime, BigInteger
from datetime import datetime, timezone
from models.base import Base, SourceType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionWatermark(Base):
    """
    Tracks incremental ingestion progress per endpoint.

    Purpose:
    - Fetch only records newer than the last successful sync
    - Keep run statistics for observability

    Design:
    - One row per (endpoint_path, source)
    - Timestamp endpoints advance last_updated_timestamp, invoice-style
      endpoints advance last_numeric_id; both stay NULL until the first
      successful sync that saw a value
    - Values never decrease; rows are written once per endpoint, after
      every page of the pass has been persisted
    """
    __tablename__ = "ingestion_watermarks"

    endpoint_path = Column(String(255), primary_key=True)
    source = Column(Enum(SourceType), primary_key=True)

    # Watermark values
    last_updated_timestamp = Column(DateTime(timezone=True), nullable=True)
    last_numeric_id = Column(BigInteger, nullable=True)

    # Run statistics
    last_ingestion_time = Column(DateTime(timezone=True), nullable=True)
    total_records_loaded = Column(BigInteger, nullable=False, default=0)
    last_run_records = Column(BigInteger, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
