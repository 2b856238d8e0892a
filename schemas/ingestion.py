"""
Pydantic schemas for the ingestion engine's domain objects.

These are the types that flow between the registry, the pagination
driver, the stores and the orchestrator. ORM rows are converted to and
from these at the store boundary.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from core.config import settings
from core.exceptions import MalformedResponseError
from models.base import (
    PaginationStyle,
    SourceType,
    SyncMode,
    TerminalReason,
    WatermarkField,
)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Payload shapes
# ============================================================================

class _ArrayShape(BaseModel, ABC):
    """Where the business records live inside a response document"""

    class Config:
        frozen = True

    @property
    @abstractmethod
    def array_key(self) -> str:
        pass

    def extract(self, payload: Any, endpoint_path: str = "") -> List[Any]:
        """
        Return the records of one response page.

        A document without the array yields no records (PrestaShop answers
        an empty result with a bare ``[]``); anything else that is not the
        expected structure is malformed.
        """
        if isinstance(payload, list):
            if not payload:
                return []
            raise MalformedResponseError(
                "Expected a JSON object, got a non-empty array",
                context={"endpoint": endpoint_path, "array_key": self.array_key}
            )

        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Expected a JSON object, got {type(payload).__name__}",
                context={"endpoint": endpoint_path, "array_key": self.array_key}
            )

        records = payload.get(self.array_key)
        if records is None:
            return []
        if not isinstance(records, list):
            raise MalformedResponseError(
                f"'{self.array_key}' is not an array",
                context={"endpoint": endpoint_path, "array_key": self.array_key}
            )
        return records


class CollectionArray(_ArrayShape):
    """Economic REST: ``{"collection": [...]}``"""
    kind: Literal["collection"] = "collection"

    @property
    def array_key(self) -> str:
        return "collection"


class ItemsArray(_ArrayShape):
    """Economic OpenAPI: ``{"items": [...], "cursor": "..."}``"""
    kind: Literal["items"] = "items"

    @property
    def array_key(self) -> str:
        return "items"


class NamedArray(_ArrayShape):
    """PrestaShop: ``{"products": [...]}``, named after the resource"""
    kind: Literal["named"] = "named"
    name: str

    @property
    def array_key(self) -> str:
        return self.name


PayloadShape = Annotated[
    Union[CollectionArray, ItemsArray, NamedArray],
    Field(discriminator="kind")
]


def default_payload_shape(source: SourceType, endpoint_path: str) -> _ArrayShape:
    if source == SourceType.REST:
        return CollectionArray()
    if source == SourceType.OPENAPI:
        return ItemsArray()
    return NamedArray(name=endpoint_path.rstrip("/").split("/")[-1])


# ============================================================================
# Endpoint configuration
# ============================================================================

class WatermarkKey(NamedTuple):
    endpoint_path: str
    source: SourceType


class EndpointConfig(BaseModel):
    """
    One ingestible resource.

    Pagination style, payload shape and filter field are resolved once,
    at construction, from the source family when not given explicitly.
    """
    endpoint_path: str
    source: SourceType
    description: Optional[str] = None
    page_size: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1, le=10000)
    pagination: Optional[PaginationStyle] = None
    watermark_field: WatermarkField = WatermarkField.NONE
    watermark_key: Optional[str] = None
    filter_field: Optional[str] = None
    payload_shape: Optional[PayloadShape] = None
    query_params: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True

    class Config:
        frozen = True

    @model_validator(mode="before")
    @classmethod
    def resolve_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        path = str(data.get("endpoint_path") or "").strip().lstrip("/")
        data["endpoint_path"] = path

        try:
            source = SourceType(data.get("source"))
        except ValueError:
            # Let field validation report the bad source
            return data

        if data.get("pagination") is None:
            data["pagination"] = (
                PaginationStyle.CURSOR if source == SourceType.OPENAPI else PaginationStyle.OFFSET
            )
        if data.get("payload_shape") is None and path:
            data["payload_shape"] = default_payload_shape(source, path).model_dump()
        if data.get("filter_field") is None:
            data["filter_field"] = data.get("watermark_key")
        if data.get("query_params") is None:
            data["query_params"] = {}
        return data

    @field_validator("endpoint_path")
    @classmethod
    def validate_endpoint_path(cls, v: str) -> str:
        if not v:
            raise ValueError("endpoint_path must not be empty")
        return v

    @model_validator(mode="after")
    def validate_watermark(self) -> "EndpointConfig":
        if self.watermark_field != WatermarkField.NONE and not self.watermark_key:
            raise ValueError(
                f"watermark_key is required when watermark_field is {self.watermark_field.value}"
            )
        return self

    @property
    def key(self) -> WatermarkKey:
        return WatermarkKey(self.endpoint_path, self.source)

    @property
    def shape(self) -> _ArrayShape:
        return self.payload_shape


# ============================================================================
# Watermarks
# ============================================================================

class Watermark(BaseModel):
    """Incremental progress for one endpoint"""
    endpoint_path: str
    source: SourceType
    last_updated_timestamp: Optional[datetime] = None
    last_numeric_id: Optional[int] = Field(default=None, ge=0)
    last_ingestion_time: Optional[datetime] = None
    total_records_loaded: int = Field(default=0, ge=0)
    last_run_records: int = Field(default=0, ge=0)

    class Config:
        from_attributes = True

    @field_validator("last_updated_timestamp", "last_ingestion_time")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @classmethod
    def initial(cls, key: WatermarkKey) -> "Watermark":
        return cls(endpoint_path=key.endpoint_path, source=key.source)

    @property
    def key(self) -> WatermarkKey:
        return WatermarkKey(self.endpoint_path, self.source)

    @property
    def is_empty(self) -> bool:
        return self.last_updated_timestamp is None and self.last_numeric_id is None

    def advance(
        self,
        last_updated_timestamp: Optional[datetime] = None,
        last_numeric_id: Optional[int] = None,
        records: int = 0,
        at: Optional[datetime] = None
    ) -> "Watermark":
        """
        Return the watermark after a successful pass.

        A candidate replaces a stored value only when strictly greater;
        a missing candidate keeps the stored value.
        """
        timestamp = self.last_updated_timestamp
        candidate_ts = ensure_utc(last_updated_timestamp)
        if candidate_ts is not None and (timestamp is None or candidate_ts > timestamp):
            timestamp = candidate_ts

        numeric_id = self.last_numeric_id
        if last_numeric_id is not None and (numeric_id is None or last_numeric_id > numeric_id):
            numeric_id = last_numeric_id

        return self.model_copy(update={
            "last_updated_timestamp": timestamp,
            "last_numeric_id": numeric_id,
            "last_ingestion_time": ensure_utc(at) or utcnow(),
            "total_records_loaded": self.total_records_loaded + records,
            "last_run_records": records,
        })


def format_timestamp(value: datetime) -> str:
    """
    ISO-8601 in UTC with a ``Z`` suffix.

    Milliseconds unless the value carries microseconds; a truncated value
    would make a ``$gt:`` filter match the record at the watermark again.
    """
    value = ensure_utc(value)
    timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
    return value.isoformat(timespec=timespec).replace("+00:00", "Z")


class WatermarkFilter(BaseModel):
    """
    Server-side "strictly newer than the watermark" filter.

    ``str()`` renders the Economic syntax (``field$gt:value``); clients for
    other APIs render ``field`` and ``after`` their own way.
    """
    field: str
    after: Union[datetime, int]

    class Config:
        frozen = True

    @property
    def is_timestamp(self) -> bool:
        return isinstance(self.after, datetime)

    def __str__(self) -> str:
        if self.is_timestamp:
            return f"{self.field}$gt:{format_timestamp(self.after)}"
        return f"{self.field}$gte:{self.after + 1}"


# ============================================================================
# Pages
# ============================================================================

class FetchedPage(BaseModel):
    """One API response page as produced by the pagination driver"""
    source: SourceType
    endpoint_path: str
    page_number: int = Field(ge=0)
    record_count: int = Field(ge=0)
    payload: Any
    next_cursor: Optional[str] = None


class StoredPage(FetchedPage):
    """A page after it landed in the raw payload sink"""
    run_id: UUID
    ingested_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Sync results
# ============================================================================

class EndpointOutcome(BaseModel):
    """Result of one endpoint within an orchestrator run"""
    endpoint_path: str
    source: SourceType
    status: Literal["success", "partial", "failed"] = "success"
    records_loaded: int = 0
    pages: int = 0
    terminal_reason: Optional[TerminalReason] = None
    watermark_before: Optional[Watermark] = None
    watermark_after: Optional[Watermark] = None
    error_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class SyncReport(BaseModel):
    """Aggregated result of ``run_sync``; never raised, always returned"""
    run_id: UUID = Field(default_factory=uuid4)
    source: SourceType
    mode: SyncMode
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    outcomes: List[EndpointOutcome] = Field(default_factory=list)
    run_error: Optional[str] = None

    @computed_field
    @property
    def endpoints_processed(self) -> int:
        return len(self.outcomes)

    @computed_field
    @property
    def total_records(self) -> int:
        return sum(o.records_loaded for o in self.outcomes)

    @computed_field
    @property
    def per_endpoint_errors(self) -> Dict[str, str]:
        return {o.endpoint_path: o.error or "" for o in self.outcomes if not o.succeeded}

    @property
    def succeeded(self) -> bool:
        return self.run_error is None and not self.per_endpoint_errors

    def render(self) -> str:
        """Multi-line summary for logs, alerts and the scheduler history."""
        failures = len(self.per_endpoint_errors)
        mode = self.mode.value.capitalize()

        if self.run_error:
            headline = f"{mode} sync of {self.source.value} endpoints aborted."
        elif failures:
            headline = (
                f"{mode} sync of {self.source.value} endpoints completed "
                f"with {failures} failed endpoint(s)."
            )
        else:
            headline = f"{mode} sync of {self.source.value} endpoints completed successfully."

        lines = [
            headline,
            f"Run: {self.run_id}",
            f"Endpoints processed: {self.endpoints_processed}",
            f"Total records processed: {self.total_records}",
        ]
        if self.run_error:
            lines.append(f"Error: {self.run_error}")

        if self.outcomes:
            lines.append("")
            lines.append("Endpoint Summary:")
        for outcome in self.outcomes:
            if outcome.succeeded:
                lines.append(
                    f"  - {outcome.endpoint_path}: {outcome.records_loaded} records "
                    f"({outcome.pages} pages)"
                )
            elif outcome.status == "partial":
                lines.append(
                    f"  - {outcome.endpoint_path}: INCOMPLETE after {outcome.records_loaded} records "
                    f"({outcome.pages} pages) - {outcome.error}"
                )
            else:
                lines.append(
                    f"  - {outcome.endpoint_path}: FAILED after {outcome.records_loaded} records "
                    f"({outcome.pages} pages) - {outcome.error}"
                )
        return "\n".join(lines)
