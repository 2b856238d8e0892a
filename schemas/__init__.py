"""
Pydantic schemas for data validation and serialization.

Schemas:
    ingestion: Domain objects of the ingestion engine (EndpointConfig,
               PayloadShape variants, Watermark, pages, SyncReport)
    api: Operations API request/response models

Usage:
    from schemas.ingestion import EndpointConfig, Watermark
    from schemas.api import HealthCheckResponse

Example:
    endpoint = EndpointConfig(
        endpoint_path="invoices/booked",
        source=SourceType.REST,
        watermark_field=WatermarkField.LAST_NUMERIC_ID,
        watermark_key="bookedInvoiceNumber"
    )

    # Pagination and payload shape are resolved from the source family
    assert endpoint.pagination == PaginationStyle.OFFSET
    assert endpoint.shape == CollectionArray()
"""

__all__ = [
    "EndpointConfig",
    "CollectionArray",
    "ItemsArray",
    "NamedArray",
    "PayloadShape",
    "Watermark",
    "WatermarkFilter",
    "FetchedPage",
    "StoredPage",
    "EndpointOutcome",
    "SyncReport",
    "HealthCheckResponse",
    "SyncResponse",
]
