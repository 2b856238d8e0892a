"""
Custom exceptions for the ingestion engine with structured error context.

Every exception carries a context dictionary for logging and for the
per-endpoint sync report. API errors additionally carry the HTTP status,
a truncated body excerpt, and masked credential fingerprints (never the
full secret).

Exception Hierarchy:
    ETLException (base)
    ├── ConfigurationError
    ├── ExtractionError
    │   ├── ApiError
    │   │   ├── AuthenticationError
    │   │   ├── RateLimitError
    │   │   ├── ApiServerError
    │   │   ├── ApiTimeoutError
    │   │   └── ApiConnectionError
    │   └── MalformedResponseError
    ├── LoadError
    │   └── SinkError
    ├── CheckpointError
    │   └── WatermarkStoreError
    │       └── WatermarkPersistenceError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ETLException(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (endpoint, source, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for transient errors the API client may retry with backoff:
    timeouts, connection failures, HTTP 429 and HTTP 5xx.
    """
    pass


class NonRetryableError(ETLException):
    """
    Mixin for permanent errors: authentication failures, unparseable
    responses, client errors (HTTP 4xx other than 429).
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(ETLException):
    """
    Raised for invalid endpoint configuration (duplicate keys, missing
    watermark key, unknown source) or missing credentials.
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for data extraction failures."""
    pass


class ApiError(ExtractionError):
    """
    Non-2xx HTTP response, or any failure of a single page request.

    Attributes:
        status_code: HTTP status code (None for network-level failures)
        body_excerpt: Response body truncated to 500 characters, secrets redacted
        masked_credentials: Credential name -> last four characters
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        *,
        status_code: Optional[int] = None,
        body_excerpt: Optional[str] = None,
        masked_credentials: Optional[Dict[str, str]] = None
    ):
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        self.masked_credentials = dict(masked_credentials or {})

        context = dict(context or {})
        if status_code is not None:
            context["status_code"] = status_code
        if body_excerpt:
            context["response_body"] = body_excerpt
        if self.masked_credentials:
            context["credentials"] = self.masked_credentials

        super().__init__(message, context, original_exception)


class AuthenticationError(NonRetryableError, ApiError):
    """Authentication failures (HTTP 401, 403)."""
    pass


class RateLimitError(RetryableError, ApiError):
    """Rate limiting (HTTP 429); retried after ``retry_after`` seconds."""

    def __init__(self, message: str, *args, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, *args, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class ApiServerError(RetryableError, ApiError):
    """Server-side failure (HTTP 5xx)."""
    pass


class ApiTimeoutError(RetryableError, ApiError):
    """The request exceeded the configured timeout."""
    pass


class ApiConnectionError(RetryableError, ApiError):
    """Network-level failure: DNS, TCP reset, TLS."""
    pass


class MalformedResponseError(NonRetryableError, ExtractionError):
    """
    A 2xx response whose body is not the expected structured document.

    Context should include:
        - endpoint: Endpoint path
        - reason: What was wrong with the body
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for persistence failures."""
    pass


class SinkError(LoadError):
    """
    Raised when appending to or clearing the raw payload sink fails.

    Context should include:
        - operation: INSERT or DELETE
        - endpoint: Endpoint path (for appends)
        - page_number: Page being persisted (for appends)
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(ETLException):
    """Base exception for incremental-progress bookkeeping failures."""
    pass


class WatermarkStoreError(CheckpointError):
    """Reading the watermark store failed."""
    pass


class WatermarkPersistenceError(WatermarkStoreError):
    """
    The final watermark write failed after a successful data sync.

    Pages are durable but the progress marker is not; the next run
    reprocesses the endpoint from the last committed watermark.
    """
    pass
