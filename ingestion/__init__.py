"""
Ingestion pipeline components.

This package contains everything between the source APIs and the raw
landing table:

Modules:
    base: Abstract API client with retry logic and credential masking
    pagination: Pagination driver and watermark candidate tracking
    registry: Endpoint catalogue (static default and SQL-backed)
    watermarks: Watermark store (in-memory and SQL)
    sink: Raw payload sink (in-memory and SQL)
    runner: Ingestion orchestrator and sync entrypoints
    scheduler: APScheduler integration for the nightly syncs

Subpackages:
    extractors: Source API clients (Economic REST/OpenAPI, PrestaShop)

Architecture:
    Orchestrator -> Registry -> Watermark Store (read) -> Pagination Driver
    -> API Client -> Raw Payload Sink (every page) -> Watermark Store
    (write, once per endpoint, after success)

Usage:
    from ingestion.runner import run_incremental_sync
    from models.base import SourceType

Example:
    summary = await run_incremental_sync(SourceType.REST)
    print(summary)

Error Handling:
    All components raise custom exceptions from core.exceptions. The
    orchestrator catches them per endpoint and reports them; a sync run
    never raises.
"""

__all__ = [
    "ApiClient",
    "EconomicClient",
    "PrestaShopClient",
    "PaginationDriver",
    "EndpointRegistry",
    "WatermarkStore",
    "RawPayloadSink",
    "IngestionOrchestrator",
    "IngestionScheduler",
    "run_full_sync",
    "run_incremental_sync",
]
