"""
Core utilities and configuration for the ingestion engine.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database connection and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities
    security: Credential masking for errors, logs and reports

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import ApiError, WatermarkPersistenceError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "get_session",
    "ping",
    "setup_logging",
    "mask_secret",
    "redact_secrets",
    # Exceptions
    "ETLException",
    "ConfigurationError",
    "ExtractionError",
    "ApiError",
    "AuthenticationError",
    "RateLimitError",
    "ApiServerError",
    "ApiTimeoutError",
    "ApiConnectionError",
    "MalformedResponseError",
    "LoadError",
    "SinkError",
    "CheckpointError",
    "WatermarkStoreError",
    "WatermarkPersistenceError",
    "RetryableError",
    "NonRetryableError",
]
