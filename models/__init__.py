"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (SourceType, PaginationStyle,
          WatermarkField, SyncMode, TerminalReason)
    endpoint: Endpoint catalogue read by the orchestrator
    watermark: Per-endpoint incremental progress and run statistics
    raw_page: Append-only landing table for API response pages

Database Schema:
    All models inherit from the Base declarative class and use
    PostgreSQL JSONB for payloads and per-endpoint query parameters.

Usage:
    from models.raw_page import RawPage
    from models.base import SourceType

Relationships:
    - IngestionEndpoint 1-1 IngestionWatermark (by endpoint_path, source)
    - IngestionEndpoint 1-N RawPage (by endpoint_path, accumulating per run)
"""

__all__ = [
    "Base",
    "SourceType",
    "PaginationStyle",
    "WatermarkField",
    "SyncMode",
    "TerminalReason",
    "IngestionEndpoint",
    "IngestionWatermark",
    "RawPage",
]
