# ============================================================================
# File: ingestion/runner.py
# Description: Ingestion orchestrator and sync entrypoints
# ============================================================================
"""
Ingestion Runner - drives one sync run over every active endpoint of a source.

This module provides:
- Per-endpoint failure isolation (one failing endpoint never stops the run)
- Page-by-page persistence (every page is stored before the next request)
- Watermark commit once per endpoint, only after all its pages succeeded; a pass
  stopped by the page limit records statistics only
- A structured ``SyncReport`` that is returned, never raised
"""

import asyncio
import logging
from typing import Dict, Optional

from core.database import async_session_maker
from core.exceptions import ETLException
from ingestion.base import ApiClient
from ingestion.extractors.economic import EconomicClient
from ingestion.extractors.prestashop import PrestaShopClient
from ingestion.pagination import EndpointSync, PaginationDriver
from ingestion.registry import EndpointRegistry, SqlEndpointRegistry
from ingestion.sink import RawPayloadSink, SqlRawPayloadSink
from ingestion.watermarks import SqlWatermarkStore, WatermarkStore
from models.base import SourceType, SyncMode
from schemas.ingestion import EndpointConfig, EndpointOutcome, SyncReport, Watermark, utcnow

logger = logging.getLogger(__name__)


class IngestionOrchestrator:
    """
    Ingestion orchestrator.

    Responsibilities:
    - Read the active endpoints of a source from the registry
    - Walk each endpoint through the pagination driver
    - Persist every page to the raw payload sink as it arrives
    - Advance the watermark once per endpoint after success
    - Collect per-endpoint outcomes into a report
    """

    def __init__(
        self,
        client: ApiClient,
        registry: EndpointRegistry,
        watermark_store: WatermarkStore,
        sink: RawPayloadSink,
        driver: Optional[PaginationDriver] = None
    ):
        self.client = client
        self.registry = registry
        self.watermark_store = watermark_store
        self.sink = sink
        self.driver = driver or PaginationDriver(client)

    async def run_sync(self, source: SourceType, mode: SyncMode) -> SyncReport:
        """
        Sync every active endpoint of ``source``.

        FULL clears the sink for the source first and fetches without a
        watermark filter; INCREMENTAL appends only records newer than the
        stored watermark.

        Returns:
            SyncReport with one outcome per endpoint attempted. Run-level
            failures (registry, clear) are reported in ``run_error``.
        """
        report = SyncReport(source=source, mode=mode)
        logger.info(f"Starting {mode.value} sync for {source.value} (run {report.run_id})")

        try:
            # --------------------------------------------------
            # PHASE 1: RESOLVE ENDPOINTS
            # --------------------------------------------------
            endpoints = await self.registry.list_active(source)
            logger.info(f"Found {len(endpoints)} active {source.value} endpoints")

            # --------------------------------------------------
            # PHASE 2: FULL REFRESH CLEARS THE LANDING ZONE
            # --------------------------------------------------
            if mode == SyncMode.FULL:
                removed = await self.sink.clear(source)
                logger.info(f"Full refresh: removed {removed} stored pages for {source.value}")

            # --------------------------------------------------
            # PHASE 3: ENDPOINTS, ONE AT A TIME
            # --------------------------------------------------
            for endpoint in endpoints:
                outcome = await self._sync_endpoint(endpoint, mode, report)
                report.outcomes.append(outcome)

        except ETLException as e:
            logger.error(
                f"Sync run aborted: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            report.run_error = self._describe(e)

        except Exception as e:
            logger.exception("Unexpected error in sync run")
            report.run_error = self._describe(e)

        report.finished_at = utcnow()
        logger.info(
            f"{mode.value.capitalize()} sync for {source.value} finished: "
            f"{report.endpoints_processed} endpoints, {report.total_records} records, "
            f"{len(report.per_endpoint_errors)} failed"
        )
        return report

    async def _sync_endpoint(
        self,
        endpoint: EndpointConfig,
        mode: SyncMode,
        report: SyncReport
    ) -> EndpointOutcome:
        """Sync one endpoint; errors are caught and recorded, never raised."""
        watermark_before: Optional[Watermark] = None
        sync: Optional[EndpointSync] = None

        try:
            watermark_before = await self.watermark_store.get(endpoint.key)
            sync = EndpointSync(endpoint, watermark_before, mode)

            logger.info(
                f"Syncing {endpoint.source.value}:{endpoint.endpoint_path} "
                f"(page size {endpoint.page_size}, {endpoint.pagination.value} pagination)"
            )

            async for page in self.driver.iter_pages(sync):
                await self.sink.append(page, report.run_id)

            watermark_after = await self.watermark_store.put(sync.committed_watermark())

            logger.info(
                f"{endpoint.endpoint_path}: {sync.records} records in {sync.pages} pages "
                f"({sync.terminal_reason.value})"
            )
            status, error = "success", None
            if not sync.complete:
                logger.warning(
                    f"{endpoint.endpoint_path}: pass incomplete, watermark left at its stored value"
                )
                status = "partial"
                error = f"Stopped at the page limit after {sync.pages} pages; watermark not advanced"

            return EndpointOutcome(
                endpoint_path=endpoint.endpoint_path,
                source=endpoint.source,
                status=status,
                records_loaded=sync.records,
                pages=sync.pages,
                terminal_reason=sync.terminal_reason,
                watermark_before=watermark_before,
                watermark_after=watermark_after,
                error=error
            )

        except ETLException as e:
            logger.error(
                f"Endpoint {endpoint.endpoint_path} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return self._failed(endpoint, sync, watermark_before, e)

        except Exception as e:
            logger.exception(f"Unexpected error syncing {endpoint.endpoint_path}")
            return self._failed(endpoint, sync, watermark_before, e)

    def _failed(
        self,
        endpoint: EndpointConfig,
        sync: Optional[EndpointSync],
        watermark_before: Optional[Watermark],
        error: Exception
    ) -> EndpointOutcome:
        return EndpointOutcome(
            endpoint_path=endpoint.endpoint_path,
            source=endpoint.source,
            status="failed",
            records_loaded=sync.records if sync else 0,
            pages=sync.pages if sync else 0,
            terminal_reason=sync.terminal_reason if sync else None,
            watermark_before=watermark_before,
            watermark_after=watermark_before,
            error_type=type(error).__name__,
            error=self._describe(error)
        )

    @staticmethod
    def _describe(error: Exception) -> str:
        message = error.message if isinstance(error, ETLException) else str(error)
        return f"{type(error).__name__}: {message}"


# ============================================================================
# Entrypoints
# ============================================================================

def build_client(source: SourceType, **kwargs) -> ApiClient:
    """API client for a source family, configured from settings."""
    if source == SourceType.PRESTASHOP:
        return PrestaShopClient(**kwargs)
    return EconomicClient(source, **kwargs)


_source_locks: Dict[SourceType, asyncio.Lock] = {}


async def run_sync(source: SourceType, mode: SyncMode) -> SyncReport:
    """
    One sync run against the configured database and APIs.

    Runs of the same source are serialized within the process, whether
    started by the scheduler or through the API. Each store gets its own
    session so a rollback in one never discards work committed by another.
    """
    lock = _source_locks.setdefault(source, asyncio.Lock())
    if lock.locked():
        logger.info(f"Waiting for the running {source.value} sync to finish")

    async with lock, build_client(source) as client, \
            async_session_maker() as registry_session, \
            async_session_maker() as watermark_session, \
            async_session_maker() as sink_session:
        orchestrator = IngestionOrchestrator(
            client=client,
            registry=SqlEndpointRegistry(registry_session),
            watermark_store=SqlWatermarkStore(watermark_session),
            sink=SqlRawPayloadSink(sink_session)
        )
        return await orchestrator.run_sync(source, mode)


async def run_full_sync(source: SourceType) -> str:
    """Clear and re-fetch every active endpoint of a source; returns the rendered report."""
    report = await run_sync(SourceType(source), SyncMode.FULL)
    return report.render()


async def run_incremental_sync(source: SourceType) -> str:
    """Fetch records newer than each endpoint's watermark; returns the rendered report."""
    report = await run_sync(SourceType(source), SyncMode.INCREMENTAL)
    return report.render()
