"""
Pytest configuration and fixtures
"""

import json
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from ingestion.extractors.economic import EconomicClient
from ingestion.extractors.prestashop import PrestaShopClient
from ingestion.registry import StaticEndpointRegistry
from ingestion.sink import InMemoryRawPayloadSink
from ingestion.watermarks import InMemoryWatermarkStore
from models.base import SourceType, WatermarkField
from schemas.ingestion import EndpointConfig

APP_SECRET = "Xq7TpL2vRk9sWm3c4F1a"
AGREEMENT_GRANT = "Zb8NfY6uHj5dGe0oPi2w"
WS_KEY = "QW3ER7TY9UI1OP5AS2DF8GH4"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def assert_no_secret_leak(text: str, secret: str) -> None:
    """Nothing longer than the last four characters of a secret may appear."""
    for i in range(len(secret) - 4):
        window = secret[i:i + 5]
        assert window not in text, f"secret fragment {window!r} leaked"


class RecordingHandler:
    """
    MockTransport handler that answers from a queue of responses and keeps
    every request it saw.
    """

    def __init__(self, responses: Optional[List[httpx.Response]] = None):
        self.responses = list(responses or [])
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def params(self) -> List[Dict[str, str]]:
        return [dict(r.url.params) for r in self.requests]


def json_response(payload, status_code: int = 200, headers=None) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **(headers or {})}
    )


def collection_page(ids: List[int], key: str = "bookedInvoiceNumber") -> Dict:
    return {"collection": [{key: i} for i in ids]}


@pytest.fixture
def mock_http() -> Callable:
    """Build an httpx.AsyncClient that routes every request to a handler."""
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def economic_client(mock_http):
    """Economic REST client over a RecordingHandler, no retry delay."""

    def factory(handler, source: SourceType = SourceType.REST, max_retries: int = 1):
        return EconomicClient(
            source,
            app_secret=APP_SECRET,
            agreement_grant=AGREEMENT_GRANT,
            base_url="https://restapi.example.test/",
            max_retries=max_retries,
            retry_delay=0,
            http_client=mock_http(handler)
        )

    return factory


@pytest.fixture
def prestashop_client(mock_http):

    def factory(handler, max_retries: int = 1):
        return PrestaShopClient(
            ws_key=WS_KEY,
            base_url="https://shop.example.test/api/",
            language_id=1,
            max_retries=max_retries,
            retry_delay=0,
            http_client=mock_http(handler)
        )

    return factory


@pytest.fixture
def invoices_endpoint() -> EndpointConfig:
    return EndpointConfig(
        endpoint_path="invoices/booked",
        source=SourceType.REST,
        watermark_field=WatermarkField.LAST_NUMERIC_ID,
        watermark_key="bookedInvoiceNumber"
    )


@pytest.fixture
def customers_endpoint() -> EndpointConfig:
    return EndpointConfig(
        endpoint_path="customers",
        source=SourceType.REST,
        watermark_field=WatermarkField.LAST_UPDATED_TIMESTAMP,
        watermark_key="lastUpdated"
    )


@pytest.fixture
def lines_endpoint() -> EndpointConfig:
    return EndpointConfig(
        endpoint_path="invoices/booked/lines",
        source=SourceType.OPENAPI,
        watermark_field=WatermarkField.LAST_NUMERIC_ID,
        watermark_key="documentId"
    )


@pytest.fixture
def watermark_store() -> InMemoryWatermarkStore:
    return InMemoryWatermarkStore()


@pytest.fixture
def sink() -> InMemoryRawPayloadSink:
    return InMemoryRawPayloadSink()


@pytest.fixture
def registry() -> StaticEndpointRegistry:
    return StaticEndpointRegistry()


class FakeEconomicServer:
    """
    In-process stand-in for the Economic APIs.

    Serves ``records[path]`` with skippages/pagesize or pageSize/cursor
    paging and honours ``field$gt:`` / ``field$gte:`` filters.
    """

    def __init__(self, records: Optional[Dict[str, List[Dict]]] = None):
        self.records: Dict[str, List[Dict]] = records or {}
        self.failures: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []

    def requests_for(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.lstrip("/") == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.lstrip("/")
        params = request.url.params

        if path in self.failures:
            return httpx.Response(self.failures[path], text="internal error")

        records = self._filtered(self.records.get(path, []), params.get("filter"))

        if "pageSize" in params:
            size = int(params["pageSize"])
            start = int(params.get("cursor") or 0)
            body = {"items": records[start:start + size]}
            if start + size < len(records):
                body["cursor"] = str(start + size)
            return json_response(body)

        size = int(params["pagesize"])
        start = int(params["skippages"]) * size
        return json_response({"collection": records[start:start + size]})

    @staticmethod
    def _filtered(records: List[Dict], expression: Optional[str]) -> List[Dict]:
        if not expression:
            return records
        field, rest = expression.split("$", 1)
        op, raw = rest.split(":", 1)

        if raw.isdigit():
            value, convert = int(raw), int
        else:
            def convert(v):
                return datetime.fromisoformat(str(v).replace("Z", "+00:00"))
            value = convert(raw)

        if op == "gt":
            return [r for r in records if convert(r[field]) > value]
        return [r for r in records if convert(r[field]) >= value]
