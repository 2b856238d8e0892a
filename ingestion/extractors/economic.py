"""
Economic API client for the REST and OpenAPI families.

REST endpoints live under ``restapi.e-conomic.com`` and page with
``skippages``/``pagesize``; OpenAPI endpoints live under
``apis.e-conomic.com`` and page with ``pageSize``/``cursor``. Both
authenticate with the app secret and agreement grant tokens sent as
headers.
"""

import logging
from typing import Any, Dict, Optional

from core.config import settings
from ingestion.base import ApiClient, USER_AGENT
from models.base import PaginationStyle, SourceType
from schemas.ingestion import EndpointConfig, WatermarkFilter

logger = logging.getLogger(__name__)

DEMO_SECRET = "demo"


class EconomicClient(ApiClient):
    """
    Client for one Economic API family.

    Example:
        async with EconomicClient(SourceType.REST) as client:
            page = await client.fetch_page(endpoint, 1000, offset=0)
    """

    def __init__(
        self,
        source: SourceType = SourceType.REST,
        app_secret: Optional[str] = None,
        agreement_grant: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs
    ):
        if source not in (SourceType.REST, SourceType.OPENAPI):
            raise ValueError(f"EconomicClient does not serve {source.value} endpoints")

        if base_url is None:
            base_url = (
                settings.ECONOMIC_REST_BASE_URL
                if source == SourceType.REST
                else settings.ECONOMIC_OPENAPI_BASE_URL
            )
        super().__init__(base_url, **kwargs)

        self.source = source
        self.source_types = (source,)
        self.app_secret = app_secret if app_secret is not None else settings.ECONOMIC_APP_SECRET
        self.agreement_grant = (
            agreement_grant if agreement_grant is not None else settings.ECONOMIC_AGREEMENT_GRANT
        )

    @property
    def demo_mode(self) -> bool:
        """Both secrets set to ``demo`` selects Economic's public demo agreement."""
        return self.app_secret == DEMO_SECRET and self.agreement_grant == DEMO_SECRET

    def _credentials(self) -> Dict[str, Optional[str]]:
        return {
            "appsecret": self.app_secret,
            "agreementgrant": self.agreement_grant,
        }

    def _headers(self) -> Dict[str, str]:
        return {
            "X-AppSecretToken": self.app_secret,
            "X-AgreementGrantToken": self.agreement_grant,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "User-Agent": USER_AGENT,
        }

    def build_request(
        self,
        endpoint: EndpointConfig,
        page_size: int,
        offset: Optional[int],
        cursor: Optional[str],
        filter_expression: Optional[WatermarkFilter]
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(endpoint.query_params)

        if endpoint.pagination == PaginationStyle.CURSOR:
            params["pageSize"] = page_size
            if cursor:
                params["cursor"] = cursor
        else:
            params["skippages"] = (offset or 0) // page_size
            params["pagesize"] = page_size

        if filter_expression is not None:
            params["filter"] = str(filter_expression)

        if self.demo_mode:
            params["demo"] = "true"

        url = f"{self.base_url}{endpoint.endpoint_path}"
        logger.debug(f"GET {url} params={params}")

        return {
            "url": url,
            "params": params,
            "headers": self._headers(),
        }
