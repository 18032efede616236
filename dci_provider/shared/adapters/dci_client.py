"""
DoiT Console API client.

Wires settings -> credential source -> ResilientTransport -> AuthenticatedPipeline
-> PaginationAggregator. Resource handlers use `request`/`get_json` for single
items and `list_items` for collections.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import TracebackType
from typing import Any, Optional, Union

import httpx
import structlog

from dci_provider.shared.adapters.auth import (
    AuthenticatedPipeline,
    CredentialSource,
    QueryParams,
    StaticTokenSource,
    build_user_agent,
)
from dci_provider.shared.adapters.http_retry import ResilientTransport
from dci_provider.shared.adapters.list_endpoints import ListEndpoint, get_list_endpoint
from dci_provider.shared.adapters.pagination import (
    AggregationResult,
    ManualPagination,
    PaginationAggregator,
    select_pagination,
)
from dci_provider.shared.core.config import Settings, get_settings
from dci_provider.shared.core.exceptions import UnexpectedResponseError
from dci_provider.shared.core.http import build_http_client

logger = structlog.get_logger()

VALIDATE_PATH = "/auth/v1/validate"


class DCIClient:
    """
    Usage:
        async with DCIClient.from_settings() as client:
            budgets = await client.list_items("budgets")
            page = await client.list_items("alerts", max_results="10")
    """

    def __init__(
        self,
        pipeline: AuthenticatedPipeline,
        aggregator: Optional[PaginationAggregator] = None,
        *,
        owns_http_client: bool = False,
    ):
        self.pipeline = pipeline
        self.aggregator = aggregator or PaginationAggregator()
        self._owns_http_client = owns_http_client

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        credentials: Optional[CredentialSource] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        passthrough_status_codes: Iterable[int] = (),
    ) -> "DCIClient":
        settings = settings or get_settings()
        owns_http_client = http_client is None
        client = http_client or build_http_client(settings)
        transport = ResilientTransport(
            client,
            settings.backoff_policy(),
            passthrough_status_codes=passthrough_status_codes,
        )
        pipeline = AuthenticatedPipeline(
            transport,
            credentials or StaticTokenSource(settings.DOIT_API_TOKEN),
            customer_context=settings.customer_context,
            user_agent=build_user_agent(
                settings.HOST_VERSION,
                settings.PROVIDER_VERSION,
                settings.TF_APPEND_USER_AGENT,
            ),
        )
        return cls(
            pipeline,
            PaginationAggregator(max_pages=settings.PAGINATION_MAX_PAGES),
            owns_http_client=owns_http_client,
        )

    @classmethod
    async def connect(
        cls, settings: Optional[Settings] = None, **kwargs: Any
    ) -> "DCIClient":
        """Build a client and, unless disabled, confirm the token against the API."""
        settings = settings or get_settings()
        client = cls.from_settings(settings, **kwargs)
        if settings.VALIDATE_ON_CONNECT:
            try:
                await client.validate()
            except BaseException:
                await client.aclose()
                raise
        return client

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self.pipeline.transport.client

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "DCIClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[QueryParams] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        return await self.pipeline.send(
            method, path, params=params, json=json, headers=headers
        )

    async def get_json(
        self, path: str, *, params: Optional[QueryParams] = None
    ) -> Any:
        response = await self.request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedResponseError(
                f"GET {path} returned a non-JSON body: {exc}",
                status_code=response.status_code,
                body=response.text[:512],
            ) from exc

    async def validate(self) -> Any:
        payload = await self.get_json(VALIDATE_PATH)
        logger.info("dci_token_validated")
        return payload

    async def list_items(
        self,
        endpoint: Union[str, ListEndpoint],
        *,
        max_results: Union[int, str, None] = None,
        page_token: Optional[str] = None,
        params: Optional[QueryParams] = None,
    ) -> AggregationResult[dict[str, Any]]:
        """
        List a collection. Passing `max_results` fetches a single page and returns the
        API's continuation token; omitting it fetches and concatenates every page.
        """
        if isinstance(endpoint, str):
            endpoint = get_list_endpoint(endpoint)

        intent = select_pagination(max_results, page_token)
        if not endpoint.paginated and (
            isinstance(intent, ManualPagination) or intent.page_token
        ):
            raise ValueError(f"{endpoint.name} does not support pagination parameters")
        if isinstance(intent, ManualPagination):
            # Reject bad page sizes before any request goes out
            endpoint.page_size_value(intent.max_results)

        return await self.aggregator.aggregate(
            endpoint.page_fetcher(self.pipeline, params),
            intent,
            operation=endpoint.name,
        )
