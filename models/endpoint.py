from sqlalchemy import Column, String, Integer, Enum, DateTime, Boolean, Text
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
from models.base import Base, SourceType, PaginationStyle, WatermarkField


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionEndpoint(Base):
    """
    Operator-editable endpoint catalogue.

    Toggle ``active`` to include or exclude an endpoint without a deploy.
    ``payload_shape`` holds the serialized shape variant, e.g.
    {"kind": "named", "name": "products"}; NULL means the source default.
    """
    __tablename__ = "ingestion_endpoints"

    endpoint_path = Column(String(255), primary_key=True)
    source = Column(Enum(SourceType), primary_key=True)

    description = Column(Text, nullable=True)
    page_size = Column(Integer, nullable=False, default=1000)
    pagination = Column(Enum(PaginationStyle), nullable=True)
    watermark_field = Column(Enum(WatermarkField), nullable=False, default=WatermarkField.NONE)
    watermark_key = Column(String(100), nullable=True)
    filter_field = Column(String(100), nullable=True)
    payload_shape = Column(JSONB, nullable=True)
    query_params = Column(JSONB, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
