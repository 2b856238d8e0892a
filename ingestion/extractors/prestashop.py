"""
PrestaShop web service client.

PrestaShop pages with ``limit=<offset>,<count>`` and authenticates with
HTTP Basic auth, the web service key as user name and an empty password.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.exceptions import ConfigurationError
from ingestion.base import ApiClient, USER_AGENT
from models.base import PaginationStyle, SourceType
from schemas.ingestion import EndpointConfig, WatermarkFilter, format_timestamp

logger = logging.getLogger(__name__)


class PrestaShopClient(ApiClient):
    """Client for the PrestaShop ``/api/<resource>`` web service."""

    source_types = (SourceType.PRESTASHOP,)

    def __init__(
        self,
        ws_key: Optional[str] = None,
        base_url: Optional[str] = None,
        language_id: Optional[int] = None,
        **kwargs
    ):
        super().__init__(base_url or settings.PRESTASHOP_BASE_URL, **kwargs)
        ws_key = ws_key if ws_key is not None else settings.PRESTASHOP_WS_KEY
        self.ws_key = ws_key.strip() if ws_key else ws_key
        self.language_id = settings.PRESTASHOP_LANGUAGE_ID if language_id is None else language_id

    def _credentials(self) -> Dict[str, Optional[str]]:
        return {"ws_key": self.ws_key}

    def build_request(
        self,
        endpoint: EndpointConfig,
        page_size: int,
        offset: Optional[int],
        cursor: Optional[str],
        filter_expression: Optional[WatermarkFilter]
    ) -> Dict[str, Any]:
        if endpoint.pagination == PaginationStyle.CURSOR or cursor is not None:
            raise ConfigurationError(
                "PrestaShop endpoints only support offset pagination",
                context={"endpoint": endpoint.endpoint_path, "source": endpoint.source.value}
            )

        params: Dict[str, Any] = {
            "output_format": "JSON",
            "display": "full",
            "language": self.language_id,
        }
        params.update(endpoint.query_params)
        params["limit"] = f"{offset or 0},{page_size}"

        if filter_expression is not None:
            key = f"filter[{filter_expression.field}]"
            if filter_expression.is_timestamp:
                # PrestaShop compares dates as "YYYY-MM-DD HH:MM:SS"
                value = format_timestamp(filter_expression.after)[:19].replace("T", " ")
                params[key] = f">[{value}]"
                params["date"] = 1
            else:
                params[key] = f">[{filter_expression.after}]"

        url = f"{self.base_url}{endpoint.endpoint_path}"
        logger.debug(f"GET {url} params={params}")

        return {
            "url": url,
            "params": params,
            "headers": {
                "Accept": "application/json",
                "Accept-Encoding": "gzip, deflate",
                "User-Agent": USER_AGENT,
            },
            "auth": httpx.BasicAuth(self.ws_key, ""),
        }
