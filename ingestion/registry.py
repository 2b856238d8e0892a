"""
Endpoint registry: which endpoints of a source are ingested, and how.

``StaticEndpointRegistry`` serves a fixed list (by default the deployment
catalogue below); ``SqlEndpointRegistry`` reads the operator-editable
``ingestion_endpoints`` table.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConfigurationError
from models.base import SourceType, WatermarkField
from models.endpoint import IngestionEndpoint
from schemas.ingestion import EndpointConfig, WatermarkKey

logger = logging.getLogger(__name__)


PRESTASHOP_DISPLAY_FIELDS = {
    "products": "[id,name,id_category_default,active,date_upd,date_add]",
    "combinations": "full",
    "categories": "[id,name,id_parent,level_depth,active]",
    "product_option_values": "[id,id_attribute_group,name]",
}


def _economic(path, source, description, active, field=WatermarkField.NONE, key=None):
    return {
        "endpoint_path": path,
        "source": source,
        "description": description,
        "watermark_field": field,
        "watermark_key": key,
        "active": active,
    }


DEFAULT_ENDPOINTS: List[Dict[str, Any]] = [
    # Economic REST
    _economic("customers", SourceType.REST, "Customer master data", True,
              WatermarkField.LAST_UPDATED_TIMESTAMP, "lastUpdated"),
    _economic("products", SourceType.REST, "Product catalog", True,
              WatermarkField.LAST_UPDATED_TIMESTAMP, "lastUpdated"),
    _economic("invoices/booked", SourceType.REST, "Booked invoices", True,
              WatermarkField.LAST_NUMERIC_ID, "bookedInvoiceNumber"),
    _economic("invoices/drafts", SourceType.REST, "Draft invoices", False),
    _economic("accounting-years", SourceType.REST, "Accounting years info", False),
    _economic("accounting-years/2024/entries", SourceType.REST, "Accounting entries for 2024", False),
    _economic("accounting-years/2024/periods", SourceType.REST, "Accounting periods for 2024", False),
    _economic("accounting-years/2024/totals", SourceType.REST, "Accounting totals for 2024", False),
    # Economic OpenAPI
    _economic("invoices/booked/lines", SourceType.OPENAPI, "Booked invoice lines - bulk", True,
              WatermarkField.LAST_NUMERIC_ID, "documentId"),
    _economic("journalsapi/v1.0.0/entries/booked", SourceType.OPENAPI,
              "Booked journal entries", False),
    _economic("customersapi/v3.0.1/Contacts/paged", SourceType.OPENAPI,
              "Customer contacts (paged)", False),
] + [
    # PrestaShop
    {
        "endpoint_path": path,
        "source": SourceType.PRESTASHOP,
        "description": description,
        "query_params": {"display": PRESTASHOP_DISPLAY_FIELDS[path]},
        "active": True,
    }
    for path, description in [
        ("products", "Products master data"),
        ("combinations", "Product variant/SKU for joining invoice to products"),
        ("categories", "Product hierarchy"),
        ("product_option_values", "Product details -> sizes and colors"),
    ]
]


def build_endpoints(
    definitions: Iterable[Union[EndpointConfig, Dict[str, Any]]]
) -> List[EndpointConfig]:
    """
    Validate endpoint definitions and reject duplicate keys.

    Raises:
        ConfigurationError: Invalid definition or duplicate (endpoint_path, source)
    """
    endpoints: Dict[WatermarkKey, EndpointConfig] = {}

    for definition in definitions:
        if isinstance(definition, EndpointConfig):
            config = definition
        else:
            try:
                config = EndpointConfig.model_validate(definition)
            except ValidationError as e:
                raise ConfigurationError(
                    "Invalid endpoint configuration",
                    context={
                        "endpoint": definition.get("endpoint_path"),
                        "source": str(definition.get("source")),
                        "errors": e.errors(include_url=False)
                    },
                    original_exception=e
                )

        if config.key in endpoints:
            raise ConfigurationError(
                f"Duplicate endpoint {config.source.value}:{config.endpoint_path}",
                context={"endpoint": config.endpoint_path, "source": config.source.value}
            )
        endpoints[config.key] = config

    return list(endpoints.values())


class EndpointRegistry(ABC):

    @abstractmethod
    async def list_all(self, source: Optional[SourceType] = None) -> List[EndpointConfig]:
        """Every configured endpoint, active or not, ordered by source and path."""
        pass

    async def list_active(self, source: SourceType) -> List[EndpointConfig]:
        """Active endpoints of one source, ordered by path."""
        endpoints = await self.list_all(source)
        return sorted(
            (e for e in endpoints if e.active),
            key=lambda e: e.endpoint_path
        )

    async def get(self, endpoint_path: str, source: SourceType) -> Optional[EndpointConfig]:
        path = endpoint_path.strip().lstrip("/")
        for endpoint in await self.list_all(source):
            if endpoint.endpoint_path == path:
                return endpoint
        return None


class StaticEndpointRegistry(EndpointRegistry):

    def __init__(self, endpoints: Optional[Iterable[Union[EndpointConfig, Dict[str, Any]]]] = None):
        self._endpoints = build_endpoints(DEFAULT_ENDPOINTS if endpoints is None else endpoints)

    async def list_all(self, source: Optional[SourceType] = None) -> List[EndpointConfig]:
        return sorted(
            (e for e in self._endpoints if source is None or e.source == source),
            key=lambda e: (e.source.value, e.endpoint_path)
        )


class SqlEndpointRegistry(EndpointRegistry):
    """Endpoint catalogue from the ``ingestion_endpoints`` table."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def list_all(self, source: Optional[SourceType] = None) -> List[EndpointConfig]:
        stmt = select(IngestionEndpoint)
        if source is not None:
            stmt = stmt.where(IngestionEndpoint.source == source)

        try:
            result = await self.db.execute(stmt)
            rows = result.scalars().all()
        except Exception as e:
            raise ConfigurationError(
                "Failed to read endpoint registry",
                context={"operation": "SELECT", "table_name": IngestionEndpoint.__tablename__},
                original_exception=e
            )

        endpoints = build_endpoints(_row_to_definition(row) for row in rows)
        return sorted(endpoints, key=lambda e: (e.source.value, e.endpoint_path))


def _row_to_definition(row: IngestionEndpoint) -> Dict[str, Any]:
    definition = {
        "endpoint_path": row.endpoint_path,
        "source": row.source,
        "description": row.description,
        "page_size": row.page_size,
        "pagination": row.pagination,
        "watermark_field": row.watermark_field,
        "watermark_key": row.watermark_key,
        "filter_field": row.filter_field,
        "payload_shape": row.payload_shape,
        "query_params": row.query_params,
        "active": row.active,
    }
    # NULL columns fall back to the model defaults
    return {k: v for k, v in definition.items() if v is not None}
