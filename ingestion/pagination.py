"""
Pagination driver.

Walks the pages of one endpoint through an ``ApiClient`` and tracks the
watermark candidate. The driver does no persistence; the orchestrator
stores each yielded page before the next request is issued.

Termination, checked in order after every page:
    1. zero records                      -> EMPTY_PAGE
    2. fewer records than the page size  -> SHORT_PAGE
    3. cursor style, no cursor returned  -> NO_CURSOR
    4. MAX_PAGES_PER_ENDPOINT reached    -> PAGE_LIMIT
"""

import logging
from datetime import datetime
from typing import Any, AsyncIterator, List, NamedTuple, Optional

from core.config import settings
from ingestion.base import ApiClient
from models.base import PaginationStyle, SyncMode, TerminalReason, WatermarkField
from schemas.ingestion import (
    EndpointConfig,
    FetchedPage,
    Watermark,
    WatermarkFilter,
    ensure_utc,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string to an aware UTC datetime; None when unparseable."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_numeric_id(value: Any) -> Optional[int]:
    """Non-negative integer id; None when unparseable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def build_filter(config: EndpointConfig, watermark: Optional[Watermark]) -> Optional[WatermarkFilter]:
    """
    Server-side filter for records newer than the watermark.

    No filter for endpoints without a watermark field or for an empty
    watermark.
    """
    if watermark is None or config.watermark_field == WatermarkField.NONE:
        return None

    if config.watermark_field == WatermarkField.LAST_UPDATED_TIMESTAMP:
        if watermark.last_updated_timestamp is None:
            return None
        return WatermarkFilter(field=config.filter_field, after=watermark.last_updated_timestamp)

    if watermark.last_numeric_id is None:
        return None
    return WatermarkFilter(field=config.filter_field, after=watermark.last_numeric_id)


class EndpointSync:
    """
    Progress of one endpoint pass.

    Updated by ``PaginationDriver.iter_pages`` as pages arrive, so callers
    that stop consuming early still see what was fetched so far.
    """

    def __init__(
        self,
        config: EndpointConfig,
        watermark: Optional[Watermark] = None,
        mode: SyncMode = SyncMode.INCREMENTAL
    ):
        self.config = config
        self.watermark = watermark
        self.mode = mode
        # FULL re-fetches everything; the watermark still only moves forward
        self.filter_expression = (
            build_filter(config, watermark) if mode == SyncMode.INCREMENTAL else None
        )

        self.pages = 0
        self.records = 0
        self.max_timestamp: Optional[datetime] = None
        self.max_numeric_id: Optional[int] = None
        self.terminal_reason: Optional[TerminalReason] = None

    def observe(self, records: List[Any]) -> None:
        """Fold one page of records into the watermark candidate."""
        field = self.config.watermark_field
        if field == WatermarkField.NONE:
            return

        key = self.config.watermark_key
        for record in records:
            if not isinstance(record, dict):
                continue
            value = record.get(key)

            if field == WatermarkField.LAST_UPDATED_TIMESTAMP:
                timestamp = parse_timestamp(value)
                if timestamp is not None and (
                    self.max_timestamp is None or timestamp > self.max_timestamp
                ):
                    self.max_timestamp = timestamp
            else:
                numeric_id = parse_numeric_id(value)
                if numeric_id is not None and (
                    self.max_numeric_id is None or numeric_id > self.max_numeric_id
                ):
                    self.max_numeric_id = numeric_id

    @property
    def complete(self) -> bool:
        """False when the pass stopped at the page limit with pages left unread."""
        return self.terminal_reason is not None and self.terminal_reason != TerminalReason.PAGE_LIMIT

    def advanced_watermark(self) -> Watermark:
        """The stored watermark moved forward by this pass's candidate."""
        before = self.watermark or Watermark.initial(self.config.key)
        return before.advance(
            last_updated_timestamp=self.max_timestamp,
            last_numeric_id=self.max_numeric_id,
            records=self.records,
        )

    def committed_watermark(self) -> Watermark:
        """
        What the orchestrator stores after this pass.

        Records are not ordered by the watermark field, so unread pages of
        a pass cut short by the page limit may hold values below the
        candidate. Such a pass records its statistics only.
        """
        if self.complete:
            return self.advanced_watermark()
        before = self.watermark or Watermark.initial(self.config.key)
        return before.advance(records=self.records)


class EndpointSyncResult(NamedTuple):
    pages: List[FetchedPage]
    candidate: Watermark
    terminal_reason: TerminalReason


class PaginationDriver:
    """
    Fetch every page of an endpoint.

    Example:
        driver = PaginationDriver(client)
        sync = EndpointSync(config, watermark)
        async for page in driver.iter_pages(sync):
            await sink.append(page, run_id)
    """

    def __init__(self, client: ApiClient, max_pages: Optional[int] = None):
        self.client = client
        self.max_pages = settings.MAX_PAGES_PER_ENDPOINT if max_pages is None else max_pages

    async def iter_pages(self, sync: EndpointSync) -> AsyncIterator[FetchedPage]:
        config = sync.config
        page_size = config.page_size
        cursor_style = config.pagination == PaginationStyle.CURSOR
        cursor: Optional[str] = None

        if sync.filter_expression is not None:
            logger.info(f"{config.endpoint_path}: filtering with {sync.filter_expression}")

        while True:
            page_number = sync.pages
            if cursor_style:
                payload = await self.client.fetch_page(
                    config,
                    page_size,
                    cursor=cursor,
                    filter_expression=sync.filter_expression
                )
            else:
                payload = await self.client.fetch_page(
                    config,
                    page_size,
                    offset=page_number * page_size,
                    filter_expression=sync.filter_expression
                )

            records = config.shape.extract(payload, config.endpoint_path)
            next_cursor = None
            if cursor_style and isinstance(payload, dict):
                next_cursor = payload.get("cursor") or None

            sync.pages += 1
            sync.records += len(records)
            sync.observe(records)

            logger.debug(
                f"{config.endpoint_path}: page {page_number} returned {len(records)} records"
            )

            yield FetchedPage(
                source=config.source,
                endpoint_path=config.endpoint_path,
                page_number=page_number,
                record_count=len(records),
                payload=payload,
                next_cursor=next_cursor
            )

            if not records:
                sync.terminal_reason = TerminalReason.EMPTY_PAGE
            elif len(records) < page_size:
                sync.terminal_reason = TerminalReason.SHORT_PAGE
            elif cursor_style and next_cursor is None:
                sync.terminal_reason = TerminalReason.NO_CURSOR
            elif sync.pages >= self.max_pages:
                sync.terminal_reason = TerminalReason.PAGE_LIMIT
                logger.warning(
                    f"{config.endpoint_path}: stopped after {sync.pages} pages "
                    f"(MAX_PAGES_PER_ENDPOINT={self.max_pages})"
                )

            if sync.terminal_reason is not None:
                break
            cursor = next_cursor

    async def sync_endpoint(
        self,
        config: EndpointConfig,
        watermark: Optional[Watermark] = None,
        mode: SyncMode = SyncMode.INCREMENTAL
    ) -> EndpointSyncResult:
        """
        Fetch all pages of an endpoint into memory.

        Any client error propagates and the candidate is discarded.
        """
        sync = EndpointSync(config, watermark, mode)
        pages = [page async for page in self.iter_pages(sync)]
        return EndpointSyncResult(
            pages=pages,
            candidate=sync.advanced_watermark(),
            terminal_reason=sync.terminal_reason
        )
