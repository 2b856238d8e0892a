"""
Logging configuration
"""

import logging
import sys
from typing import Iterable, Optional

from core.config import settings
from core.security import redact_secrets


class SecretRedactingFilter(logging.Filter):
    """
    Replace configured credentials in formatted log messages with their
    masked form. Clients never log secrets themselves; this catches
    anything a third-party message or exception text carries along.
    """

    def __init__(self, secrets: Iterable[Optional[str]]):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = redact_secrets(message, self.secrets)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configured_secrets():
    return [
        settings.ECONOMIC_APP_SECRET,
        settings.ECONOMIC_AGREEMENT_GRANT,
        settings.PRESTASHOP_WS_KEY,
    ]


def setup_logging():
    """Configure application logging"""

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SecretRedactingFilter(configured_secrets()))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler]
    )

    # Request URLs are logged by the clients, with secrets already masked
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level ({settings.ENVIRONMENT})")
