"""
Integration tests for the ingestion orchestrator

Every test drives the real client, pagination driver and orchestrator
against an in-process Economic server and in-memory stores.
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import httpx
import pytest

from conftest import FakeEconomicServer, utc
from core.exceptions import ConfigurationError, SinkError, WatermarkPersistenceError
from ingestion import runner
from ingestion.pagination import PaginationDriver
from ingestion.registry import StaticEndpointRegistry
from ingestion.runner import IngestionOrchestrator, run_full_sync, run_incremental_sync
from ingestion.sink import InMemoryRawPayloadSink
from ingestion.watermarks import InMemoryWatermarkStore
from models.base import SourceType, SyncMode, TerminalReason, WatermarkField
from schemas.ingestion import FetchedPage, StoredPage, SyncReport, Watermark, WatermarkKey


def invoices(*numbers):
    return [{"bookedInvoiceNumber": n, "netAmount": n * 10} for n in numbers]


def customers(*timestamps):
    return [
        {"customerNumber": i, "lastUpdated": ts}
        for i, ts in enumerate(timestamps, start=1)
    ]


REST_ENDPOINTS = [
    {"endpoint_path": "accounts", "source": SourceType.REST, "page_size": 2},
    {
        "endpoint_path": "customers",
        "source": SourceType.REST,
        "page_size": 2,
        "watermark_field": WatermarkField.LAST_UPDATED_TIMESTAMP,
        "watermark_key": "lastUpdated",
    },
    {
        "endpoint_path": "invoices/booked",
        "source": SourceType.REST,
        "page_size": 2,
        "watermark_field": WatermarkField.LAST_NUMERIC_ID,
        "watermark_key": "bookedInvoiceNumber",
    },
    {"endpoint_path": "invoices/drafts", "source": SourceType.REST, "active": False},
]


@pytest.fixture
def server():
    return FakeEconomicServer({
        "accounts": [{"accountNumber": 1000}, {"accountNumber": 2000}, {"accountNumber": 3000}],
        "customers": customers(
            "2024-01-10T08:00:00Z",
            "2024-01-12T09:30:00Z",
            "2024-01-11T00:00:00Z",
        ),
        "invoices/booked": invoices(1, 2, 3, 4, 5),
    })


@pytest.fixture
def orchestrator(server, economic_client, watermark_store, sink):
    return IngestionOrchestrator(
        client=economic_client(server),
        registry=StaticEndpointRegistry(REST_ENDPOINTS),
        watermark_store=watermark_store,
        sink=sink
    )


class TestIncrementalSync:
    """Test watermark driven catch-up"""

    @pytest.mark.asyncio
    async def test_first_run_loads_everything(self, orchestrator, server, watermark_store, sink):
        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.succeeded
        assert [o.endpoint_path for o in report.outcomes] == [
            "accounts", "customers", "invoices/booked"
        ]
        assert report.total_records == 3 + 3 + 5
        assert not server.requests_for("invoices/drafts")

        invoices_outcome = report.outcomes[2]
        assert invoices_outcome.pages == 3
        assert invoices_outcome.terminal_reason == TerminalReason.SHORT_PAGE
        assert invoices_outcome.watermark_before is None
        assert invoices_outcome.watermark_after.last_numeric_id == 5

        watermark = await watermark_store.get(WatermarkKey("customers", SourceType.REST))
        assert watermark.last_updated_timestamp == utc(2024, 1, 12, 9, 30)
        assert watermark.total_records_loaded == 3

        # Endpoints without a watermark field still get a row for run statistics
        accounts = await watermark_store.get(WatermarkKey("accounts", SourceType.REST))
        assert accounts.is_empty
        assert accounts.last_run_records == 3

        assert [p.page_number for p in sink.pages_for("invoices/booked")] == [0, 1, 2]
        assert len({p.run_id for p in sink.pages}) == 1
        assert sink.pages[0].run_id == report.run_id

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, orchestrator, server, watermark_store):
        """Test an immediate re-run ingests no records for watermarked endpoints"""
        await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)
        first = await watermark_store.list()

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        by_path = {o.endpoint_path: o for o in report.outcomes}
        assert by_path["customers"].records_loaded == 0
        assert by_path["invoices/booked"].records_loaded == 0
        assert by_path["customers"].terminal_reason == TerminalReason.EMPTY_PAGE

        filters = [r.url.params.get("filter") for r in server.requests_for("invoices/booked")]
        assert filters[-1] == "bookedInvoiceNumber$gte:6"
        filters = [r.url.params.get("filter") for r in server.requests_for("customers")]
        assert filters[-1] == "lastUpdated$gt:2024-01-12T09:30:00.000Z"

        second = await watermark_store.list()
        for before, after in zip(first, second):
            assert before.last_numeric_id == after.last_numeric_id
            assert before.last_updated_timestamp == after.last_updated_timestamp

    @pytest.mark.asyncio
    async def test_microsecond_watermark_is_idempotent(self, economic_client, watermark_store, sink):
        server = FakeEconomicServer({
            "customers": customers("2024-01-12T09:30:00.123456Z", "2024-01-11T00:00:00Z"),
        })
        orchestrator = IngestionOrchestrator(
            economic_client(server), StaticEndpointRegistry([REST_ENDPOINTS[1]]), watermark_store, sink
        )

        await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)
        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.total_records == 0
        assert server.requests[-1].url.params["filter"] == "lastUpdated$gt:2024-01-12T09:30:00.123456Z"

    @pytest.mark.asyncio
    async def test_new_records_picked_up(self, orchestrator, server, watermark_store):
        await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)
        server.records["invoices/booked"] += invoices(6, 7)

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        by_path = {o.endpoint_path: o for o in report.outcomes}
        assert by_path["invoices/booked"].records_loaded == 2
        watermark = await watermark_store.get(WatermarkKey("invoices/booked", SourceType.REST))
        assert watermark.last_numeric_id == 7
        assert watermark.total_records_loaded == 7

    @pytest.mark.asyncio
    async def test_watermark_never_moves_back(self, server, economic_client, sink):
        """Test a stored watermark ahead of the data is kept"""
        store = InMemoryWatermarkStore([
            Watermark(
                endpoint_path="customers",
                source=SourceType.REST,
                last_updated_timestamp=utc(2025, 1, 1)
            )
        ])
        orchestrator = IngestionOrchestrator(
            economic_client(server), StaticEndpointRegistry(REST_ENDPOINTS), store, sink
        )

        await orchestrator.run_sync(SourceType.REST, SyncMode.FULL)

        watermark = await store.get(WatermarkKey("customers", SourceType.REST))
        assert watermark.last_updated_timestamp == utc(2025, 1, 1)


class TestPageLimit:
    """Test a pass cut short by MAX_PAGES_PER_ENDPOINT"""

    @pytest.mark.asyncio
    async def test_page_limit_keeps_pages_but_not_watermark(self, economic_client, watermark_store, sink):
        """Test unordered records behind the page limit are still ingested later"""
        server = FakeEconomicServer({"invoices/booked": invoices(5, 1, 2)})
        registry = StaticEndpointRegistry([REST_ENDPOINTS[2]])
        client = economic_client(server)
        limited = IngestionOrchestrator(
            client, registry, watermark_store, sink, driver=PaginationDriver(client, max_pages=1)
        )

        report = await limited.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        outcome = report.outcomes[0]
        assert outcome.status == "partial"
        assert outcome.terminal_reason == TerminalReason.PAGE_LIMIT
        assert outcome.records_loaded == 2
        assert not report.succeeded
        assert "INCOMPLETE" in report.render()

        watermark = await watermark_store.get(WatermarkKey("invoices/booked", SourceType.REST))
        assert watermark.last_numeric_id is None
        assert watermark.last_run_records == 2
        assert len(sink.pages_for("invoices/booked")) == 1

        unlimited = IngestionOrchestrator(client, registry, watermark_store, sink)
        report = await unlimited.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.succeeded
        ingested = [
            record["bookedInvoiceNumber"]
            for page in sink.pages_for("invoices/booked")
            for record in page.payload["collection"]
        ]
        assert 2 in ingested
        watermark = await watermark_store.get(WatermarkKey("invoices/booked", SourceType.REST))
        assert watermark.last_numeric_id == 5

    @pytest.mark.asyncio
    async def test_page_limit_never_lowers_stored_watermark(self, economic_client, sink):
        store = InMemoryWatermarkStore([
            Watermark(endpoint_path="invoices/booked", source=SourceType.REST, last_numeric_id=3)
        ])
        server = FakeEconomicServer({"invoices/booked": invoices(9, 4, 8, 6, 5)})
        client = economic_client(server)
        orchestrator = IngestionOrchestrator(
            client, StaticEndpointRegistry([REST_ENDPOINTS[2]]), store, sink,
            driver=PaginationDriver(client, max_pages=1)
        )

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.outcomes[0].status == "partial"
        watermark = await store.get(WatermarkKey("invoices/booked", SourceType.REST))
        assert watermark.last_numeric_id == 3


class TestFullSync:

    @pytest.mark.asyncio
    async def test_full_clears_source_and_ignores_watermark(
        self, server, economic_client, watermark_store
    ):
        run_id = uuid4()
        sink = InMemoryRawPayloadSink([
            StoredPage(source=SourceType.REST, endpoint_path="customers", page_number=0,
                       record_count=1, payload={"collection": [{}]}, run_id=run_id),
            StoredPage(source=SourceType.PRESTASHOP, endpoint_path="products", page_number=0,
                       record_count=1, payload={"products": [{}]}, run_id=run_id),
        ])
        await watermark_store.put(
            Watermark(endpoint_path="invoices/booked", source=SourceType.REST, last_numeric_id=3)
        )
        orchestrator = IngestionOrchestrator(
            economic_client(server), StaticEndpointRegistry(REST_ENDPOINTS), watermark_store, sink
        )

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.FULL)

        assert report.succeeded
        assert report.total_records == 11
        assert all("filter" not in r.url.params for r in server.requests)
        assert [p.payload for p in sink.pages if p.source == SourceType.PRESTASHOP] == [
            {"products": [{}]}
        ]
        assert all(p.run_id == report.run_id for p in sink.pages if p.source == SourceType.REST)

        watermark = await watermark_store.get(WatermarkKey("invoices/booked", SourceType.REST))
        assert watermark.last_numeric_id == 5

    @pytest.mark.asyncio
    async def test_incremental_appends(self, orchestrator, sink):
        await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)
        pages_after_first = len(sink.pages)

        await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert len(sink.pages) > pages_after_first
        assert len({p.run_id for p in sink.pages}) == 2


class TestFailureIsolation:
    """Test one failing endpoint never stops the run"""

    @pytest.mark.asyncio
    async def test_server_error_on_middle_endpoint(self, orchestrator, server, watermark_store):
        server.failures["customers"] = 500

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert not report.succeeded
        assert report.run_error is None
        statuses = {o.endpoint_path: o.status for o in report.outcomes}
        assert statuses == {"accounts": "success", "customers": "failed", "invoices/booked": "success"}
        assert list(report.per_endpoint_errors) == ["customers"]
        assert report.per_endpoint_errors["customers"].startswith("ApiServerError")

        failed = report.outcomes[1]
        assert failed.error_type == "ApiServerError"
        assert failed.watermark_after == failed.watermark_before
        assert await watermark_store.get(WatermarkKey("customers", SourceType.REST)) is None

        invoices_wm = await watermark_store.get(WatermarkKey("invoices/booked", SourceType.REST))
        assert invoices_wm.last_numeric_id == 5
        assert "FAILED" in report.render()

    @pytest.mark.asyncio
    async def test_failure_mid_pagination_keeps_stored_pages(
        self, server, economic_client, watermark_store, sink
    ):
        """Test pages stored before the failure stay, the watermark does not move"""

        def flaky(request):
            if request.url.path.endswith("invoices/booked") and request.url.params["skippages"] == "1":
                return httpx.Response(503, text="unavailable")
            return server(request)

        orchestrator = IngestionOrchestrator(
            economic_client(flaky), StaticEndpointRegistry(REST_ENDPOINTS), watermark_store, sink
        )

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        outcome = {o.endpoint_path: o for o in report.outcomes}["invoices/booked"]
        assert outcome.status == "failed"
        assert outcome.pages == 1
        assert outcome.records_loaded == 2
        assert len(sink.pages_for("invoices/booked")) == 1
        assert await watermark_store.get(WatermarkKey("invoices/booked", SourceType.REST)) is None

    @pytest.mark.asyncio
    async def test_sink_failure_is_endpoint_scoped(self, server, economic_client, watermark_store):
        class FailingSink(InMemoryRawPayloadSink):
            async def append(self, page: FetchedPage, run_id):
                if page.endpoint_path == "accounts":
                    raise SinkError("Failed to persist raw page", context={"operation": "INSERT"})
                return await super().append(page, run_id)

        sink = FailingSink()
        orchestrator = IngestionOrchestrator(
            economic_client(server), StaticEndpointRegistry(REST_ENDPOINTS), watermark_store, sink
        )

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.per_endpoint_errors == {
            "accounts": "SinkError: Failed to persist raw page"
        }
        assert await watermark_store.get(WatermarkKey("accounts", SourceType.REST)) is None
        assert len(sink.pages_for("customers")) == 2

    @pytest.mark.asyncio
    async def test_watermark_write_failure(self, server, economic_client, sink):
        store = InMemoryWatermarkStore()
        store.put = AsyncMock(side_effect=WatermarkPersistenceError("Failed to persist watermark"))
        orchestrator = IngestionOrchestrator(
            economic_client(server), StaticEndpointRegistry(REST_ENDPOINTS), store, sink
        )

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert {o.error_type for o in report.outcomes} == {"WatermarkPersistenceError"}
        # Pages are durable even though progress was not recorded
        assert len(sink.pages_for("invoices/booked")) == 3

    @pytest.mark.asyncio
    async def test_registry_failure_is_run_error(self, server, economic_client, watermark_store, sink):
        registry = MagicMock()
        registry.list_active = AsyncMock(side_effect=ConfigurationError("Failed to read endpoint registry"))
        orchestrator = IngestionOrchestrator(economic_client(server), registry, watermark_store, sink)

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.outcomes == []
        assert report.run_error == "ConfigurationError: Failed to read endpoint registry"
        assert report.finished_at is not None
        assert not server.requests

    @pytest.mark.asyncio
    async def test_clear_failure_aborts_full_run(self, server, economic_client, watermark_store):
        sink = InMemoryRawPayloadSink()
        sink.clear = AsyncMock(side_effect=SinkError("Failed to clear raw pages"))
        orchestrator = IngestionOrchestrator(
            economic_client(server), StaticEndpointRegistry(REST_ENDPOINTS), watermark_store, sink
        )

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.FULL)

        assert report.run_error.startswith("SinkError")
        assert report.outcomes == []
        assert not server.requests

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, server, economic_client, watermark_store, sink):
        registry = MagicMock()
        registry.list_active = AsyncMock(side_effect=RuntimeError("boom"))
        orchestrator = IngestionOrchestrator(economic_client(server), registry, watermark_store, sink)

        report = await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert report.run_error == "RuntimeError: boom"


class TestPersistenceOrder:

    @pytest.mark.asyncio
    async def test_each_page_stored_before_next_request(self, server, economic_client, watermark_store):
        requests_seen_at_append = []

        class RecordingSink(InMemoryRawPayloadSink):
            async def append(self, page, run_id):
                requests_seen_at_append.append(len(server.requests))
                return await super().append(page, run_id)

        registry = StaticEndpointRegistry([REST_ENDPOINTS[2]])
        orchestrator = IngestionOrchestrator(
            economic_client(server), registry, watermark_store, RecordingSink()
        )

        await orchestrator.run_sync(SourceType.REST, SyncMode.INCREMENTAL)

        assert requests_seen_at_append == [1, 2, 3]


class TestCursorEndpoint:

    @pytest.mark.asyncio
    async def test_openapi_lines(self, economic_client, watermark_store, sink):
        server = FakeEconomicServer({
            "invoices/booked/lines": [{"documentId": i, "lineNumber": 1} for i in range(1, 6)]
        })
        registry = StaticEndpointRegistry([{
            "endpoint_path": "invoices/booked/lines",
            "source": SourceType.OPENAPI,
            "page_size": 2,
            "watermark_field": WatermarkField.LAST_NUMERIC_ID,
            "watermark_key": "documentId",
        }])
        orchestrator = IngestionOrchestrator(
            economic_client(server, source=SourceType.OPENAPI), registry, watermark_store, sink
        )

        report = await orchestrator.run_sync(SourceType.OPENAPI, SyncMode.INCREMENTAL)

        outcome = report.outcomes[0]
        assert outcome.records_loaded == 5
        assert outcome.pages == 3
        assert outcome.terminal_reason == TerminalReason.SHORT_PAGE
        assert [r.url.params.get("cursor") for r in server.requests] == [None, "2", "4"]
        assert outcome.watermark_after.last_numeric_id == 5


class TestEntrypoints:

    @pytest.mark.asyncio
    async def test_run_full_sync_renders_report(self):
        report = SyncReport(source=SourceType.PRESTASHOP, mode=SyncMode.FULL)
        with patch("ingestion.runner.run_sync", AsyncMock(return_value=report)) as mock_run:
            summary = await run_full_sync(SourceType.PRESTASHOP)

        mock_run.assert_awaited_once_with(SourceType.PRESTASHOP, SyncMode.FULL)
        assert summary.startswith("Full sync of prestashop endpoints completed successfully.")

    @pytest.mark.asyncio
    async def test_run_incremental_sync_accepts_value(self):
        report = SyncReport(source=SourceType.REST, mode=SyncMode.INCREMENTAL)
        with patch("ingestion.runner.run_sync", AsyncMock(return_value=report)) as mock_run:
            await run_incremental_sync("rest")

        mock_run.assert_awaited_once_with(SourceType.REST, SyncMode.INCREMENTAL)

    @pytest.mark.asyncio
    async def test_runs_of_one_source_are_serialized(self):
        active = []
        overlaps = []

        class SlowOrchestrator:
            def __init__(self, **kwargs):
                pass

            async def run_sync(self, source, mode):
                if active:
                    overlaps.append(source)
                active.append(source)
                await asyncio.sleep(0.01)
                active.remove(source)
                return SyncReport(source=source, mode=mode)

        @asynccontextmanager
        async def fake_client():
            yield MagicMock()

        @asynccontextmanager
        async def fake_session():
            yield MagicMock()

        with patch.object(runner, "IngestionOrchestrator", SlowOrchestrator), \
                patch.object(runner, "build_client", lambda source: fake_client()), \
                patch.object(runner, "async_session_maker", fake_session), \
                patch.object(runner, "_source_locks", {}):
            await asyncio.gather(
                runner.run_sync(SourceType.REST, SyncMode.INCREMENTAL),
                runner.run_sync(SourceType.REST, SyncMode.FULL),
            )

        assert overlaps == []
