"""
Abstract base class for paginated JSON API clients.

This module provides the request machinery shared by every source family:
- Exponential backoff retry logic for transient failures
- Status-code to exception mapping
- Credential masking in every raised error
- Timeout handling with configurable limits
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

import httpx

from core.config import settings
from core.exceptions import (
    ApiConnectionError,
    ApiError,
    ApiServerError,
    ApiTimeoutError,
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    RateLimitError,
    RetryableError,
)
from core.security import mask_credentials, redact_secrets
from schemas.ingestion import EndpointConfig, WatermarkFilter

logger = logging.getLogger(__name__)

BODY_EXCERPT_LENGTH = 500
MAX_PAGE_SIZE = 10000
USER_AGENT = "economic-presta-ingest/1.0"


class ApiClient(ABC):
    """
    Fetch one page of one endpoint from a source API.

    Subclasses provide the base URL, the credentials and the query string
    layout; this class owns the HTTP client, retries and error mapping.

    Attributes:
        timeout: Request timeout in seconds (default: HTTP_TIMEOUT_SECONDS)
        max_retries: Maximum number of attempts (default: API_MAX_RETRIES)
        retry_delay: Initial retry delay in seconds (default: API_RETRY_DELAY_SECONDS)
    """

    source_types: tuple = ()

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.timeout = settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout
        self.max_retries = settings.API_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.API_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Source specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _credentials(self) -> Dict[str, Optional[str]]:
        """Credential name -> secret value, used for auth and masking."""
        pass

    @abstractmethod
    def build_request(
        self,
        endpoint: EndpointConfig,
        page_size: int,
        offset: Optional[int],
        cursor: Optional[str],
        filter_expression: Optional[WatermarkFilter]
    ) -> Dict[str, Any]:
        """
        Build the keyword arguments for ``httpx.AsyncClient.get``.

        Must return at least ``url`` and ``params``; may add ``headers``
        and ``auth``.
        """
        pass

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_page(
        self,
        endpoint: EndpointConfig,
        page_size: int,
        offset: Optional[int] = None,
        cursor: Optional[str] = None,
        filter_expression: Optional[WatermarkFilter] = None
    ) -> Union[Dict[str, Any], list]:
        """
        Fetch a single page and return the decoded JSON document.

        Args:
            endpoint: Endpoint to fetch
            page_size: Records per page (1..10000)
            offset: Zero-based record offset (offset pagination)
            cursor: Opaque continuation token (cursor pagination)
            filter_expression: Server-side watermark filter

        Raises:
            ValueError: Both offset and cursor given, or page_size out of range
            ConfigurationError: Missing credentials or unsupported endpoint
            ApiError: Non-2xx response or transport failure
            MalformedResponseError: 2xx response that is not JSON
        """
        if offset is not None and cursor is not None:
            raise ValueError("offset and cursor are mutually exclusive")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")
        if self.source_types and endpoint.source not in self.source_types:
            raise ConfigurationError(
                f"{type(self).__name__} cannot fetch {endpoint.source.value} endpoints",
                context={"endpoint": endpoint.endpoint_path, "source": endpoint.source.value}
            )

        self._check_credentials(endpoint)

        request = self.build_request(endpoint, page_size, offset, cursor, filter_expression)
        response = await self._make_request_with_retry(endpoint, request)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Failed to parse JSON response",
                context={
                    "endpoint": endpoint.endpoint_path,
                    "source": endpoint.source.value,
                    "reason": "body is not valid JSON",
                    "response_body": self._excerpt(response.text)
                },
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _secrets(self):
        return [value for value in self._credentials().values() if value]

    def _masked(self) -> Dict[str, str]:
        return mask_credentials(self._credentials())

    def _excerpt(self, text: Optional[str]) -> str:
        """Redact full secrets first, then truncate."""
        return redact_secrets(text, self._secrets())[:BODY_EXCERPT_LENGTH]

    def _check_credentials(self, endpoint: EndpointConfig) -> None:
        missing = [name for name, value in self._credentials().items() if not value]
        if missing:
            raise ConfigurationError(
                f"Missing credentials for {endpoint.source.value}: {', '.join(missing)}",
                context={"endpoint": endpoint.endpoint_path, "source": endpoint.source.value}
            )

    def _error_context(self, endpoint: EndpointConfig, request: Dict[str, Any]) -> Dict[str, Any]:
        params = {
            key: redact_secrets(str(value), self._secrets())
            for key, value in (request.get("params") or {}).items()
        }
        return {
            "endpoint": endpoint.endpoint_path,
            "source": endpoint.source.value,
            "url": redact_secrets(request["url"], self._secrets()),
            "params": params,
        }

    def _error_for_response(
        self,
        endpoint: EndpointConfig,
        request: Dict[str, Any],
        response: httpx.Response,
        attempt: int
    ) -> ApiError:
        status = response.status_code
        context = self._error_context(endpoint, request)
        context["retry_count"] = attempt + 1
        kwargs = {
            "status_code": status,
            "body_excerpt": self._excerpt(response.text),
            "masked_credentials": self._masked(),
        }

        if status in (401, 403):
            return AuthenticationError(
                f"Authentication failed for {endpoint.endpoint_path}", context, **kwargs
            )
        if status == 429:
            retry_after = self._retry_after(response, attempt)
            return RateLimitError(
                f"Rate limit exceeded for {endpoint.endpoint_path}",
                context,
                retry_after=retry_after,
                **kwargs
            )
        if status >= 500:
            return ApiServerError(
                f"Server error {status} for {endpoint.endpoint_path}", context, **kwargs
            )
        return ApiError(
            f"API request failed with status {status} for {endpoint.endpoint_path}",
            context,
            **kwargs
        )

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("Retry-After")
        try:
            return max(0.0, float(header))
        except (TypeError, ValueError):
            return self.retry_delay * (2 ** attempt)

    async def _make_request_with_retry(
        self,
        endpoint: EndpointConfig,
        request: Dict[str, Any]
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Only ``RetryableError`` failures are retried; everything else is
        raised on the first attempt.

        Returns:
            HTTP response with a 2xx status
        """
        attempts = max(1, self.max_retries)

        for attempt in range(attempts):
            try:
                logger.debug(
                    f"Request attempt {attempt + 1}/{attempts} to "
                    f"{endpoint.source.value}:{endpoint.endpoint_path}"
                )
                return await self._send(endpoint, request, attempt)

            except RetryableError as e:
                if attempt >= attempts - 1:
                    raise

                if isinstance(e, RateLimitError) and e.retry_after is not None:
                    delay = e.retry_after
                else:
                    delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"{type(e).__name__} on {endpoint.endpoint_path}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{attempts})"
                )
                await asyncio.sleep(delay)

        # range(attempts) is never empty
        raise AssertionError("unreachable")

    async def _send(
        self,
        endpoint: EndpointConfig,
        request: Dict[str, Any],
        attempt: int
    ) -> httpx.Response:
        try:
            response = await self._client.get(timeout=self.timeout, **request)

        except httpx.TimeoutException as e:
            raise ApiTimeoutError(
                f"Request timed out after {self.timeout} seconds",
                self._error_context(endpoint, request),
                e,
                masked_credentials=self._masked()
            )

        except httpx.TransportError as e:
            raise ApiConnectionError(
                f"Connection error: {type(e).__name__}",
                self._error_context(endpoint, request),
                e,
                masked_credentials=self._masked()
            )

        if not response.is_success:
            raise self._error_for_response(endpoint, request, response, attempt)
        return response

