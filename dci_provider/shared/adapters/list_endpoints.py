"""
List endpoints of the DoiT Console API.

Every list endpoint shares one envelope: an items array under a
resource-specific key, an optional continuation cursor and an optional total
row count. ListEndpoint turns such an endpoint into a page fetcher for the
PaginationAggregator, so no resource re-implements the paging loop.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from dci_provider.shared.adapters.auth import AuthenticatedPipeline, QueryParams
from dci_provider.shared.adapters.pagination import (
    PageFetcher,
    PageRequest,
    PageResult,
    normalize_page_token,
)
from dci_provider.shared.core.exceptions import UnexpectedResponseError

_BODY_PREVIEW_CHARS = 512


class ListEnvelope(BaseModel):
    """Paging fields of a list response; the items key is read separately."""

    model_config = ConfigDict(extra="allow")

    page_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("pageToken", "page_token")
    )
    row_count: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("rowCount", "row_count")
    )


def parse_list_page(response: httpx.Response, items_key: str) -> PageResult[dict[str, Any]]:
    """Decode one list response into a PageResult. Only 200 with a JSON object is usable."""
    if response.status_code != 200:
        raise UnexpectedResponseError(
            f"API returned status {response.status_code}",
            status_code=response.status_code,
            body=response.text[:_BODY_PREVIEW_CHARS],
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise UnexpectedResponseError(
            f"List response is not valid JSON: {exc}",
            status_code=response.status_code,
            body=response.text[:_BODY_PREVIEW_CHARS],
        ) from exc
    if not isinstance(payload, dict):
        raise UnexpectedResponseError(
            f"List response must be a JSON object, got {type(payload).__name__}",
            status_code=response.status_code,
        )

    try:
        envelope = ListEnvelope.model_validate(payload)
    except ValidationError as exc:
        raise UnexpectedResponseError(
            f"List response has malformed paging fields: {exc}",
            status_code=response.status_code,
        ) from exc

    raw_items = payload.get(items_key)
    if raw_items is None:
        items: list[dict[str, Any]] = []
    elif isinstance(raw_items, list):
        items = raw_items
    else:
        raise UnexpectedResponseError(
            f"List response field {items_key!r} must be an array",
            status_code=response.status_code,
        )

    return PageResult(
        items=items,
        next_page_token=normalize_page_token(envelope.page_token),
        row_count=envelope.row_count,
    )


@dataclass(frozen=True)
class ListEndpoint:
    name: str
    path: str
    items_key: str
    # Some endpoints type maxResults as an integer, others as a string
    page_size_type: type = str
    paginated: bool = True
    page_size_param: str = "maxResults"
    page_token_param: str = "pageToken"

    def page_size_value(self, max_results: Union[int, str]) -> Union[int, str]:
        """Validate a page size; string-typed endpoints get the normalized digits back."""
        try:
            value = int(max_results)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"{self.name}: max_results must be an integer, got {max_results!r}"
            ) from exc
        if value <= 0:
            raise ValueError(f"{self.name}: max_results must be > 0")
        return value if self.page_size_type is int else str(value)

    def page_params(self, request: PageRequest) -> dict[str, Any]:
        if not self.paginated:
            return {}
        params: dict[str, Any] = {}
        if request.max_results is not None:
            params[self.page_size_param] = self.page_size_value(request.max_results)
        if request.page_token:
            params[self.page_token_param] = request.page_token
        return params

    def page_fetcher(
        self,
        pipeline: AuthenticatedPipeline,
        params: Optional[QueryParams] = None,
    ) -> PageFetcher[dict[str, Any]]:
        """Bind the endpoint and the caller's filters into a fetch-one-page function."""
        base_params = dict(params or {})

        async def fetch_page(request: PageRequest) -> PageResult[dict[str, Any]]:
            query = {**base_params, **self.page_params(request)}
            response = await pipeline.send("GET", self.path, params=query)
            return parse_list_page(response, self.items_key)

        return fetch_page


LIST_ENDPOINTS: dict[str, ListEndpoint] = {
    endpoint.name: endpoint
    for endpoint in (
        ListEndpoint("alerts", "/analytics/v1/alerts", "alerts"),
        ListEndpoint("allocations", "/analytics/v1/allocations", "allocations"),
        ListEndpoint("annotations", "/analytics/v1/annotations", "annotations"),
        ListEndpoint("anomalies", "/anomalies/v1", "anomalies", page_size_type=int),
        ListEndpoint("assets", "/billing/v1/assets", "assets", page_size_type=int),
        ListEndpoint("budgets", "/analytics/v1/budgets", "budgets"),
        ListEndpoint(
            "cloud_incidents", "/core/v1/cloudincidents", "incidents", page_size_type=int
        ),
        ListEndpoint("commitments", "/billing/v1/commitments", "commitments"),
        ListEndpoint("datahub_datasets", "/datahub/v1/datasets", "datasets", paginated=False),
        ListEndpoint("dimensions", "/analytics/v1/dimensions", "dimensions"),
        ListEndpoint("invoices", "/billing/v1/invoices", "invoices", page_size_type=int),
        ListEndpoint("labels", "/analytics/v1/labels", "labels"),
        ListEndpoint("organizations", "/iam/v1/organizations", "organizations", paginated=False),
        ListEndpoint("platforms", "/support/v1/platforms", "platforms", paginated=False),
        ListEndpoint("products", "/support/v1/products", "products", paginated=False),
        ListEndpoint("reports", "/analytics/v1/reports", "reports"),
        ListEndpoint("roles", "/iam/v1/roles", "roles", paginated=False),
        ListEndpoint(
            "support_requests", "/support/v1/tickets", "tickets", page_size_type=int
        ),
        ListEndpoint("users", "/iam/v1/users", "users", paginated=False),
    )
}


def get_list_endpoint(name: str) -> ListEndpoint:
    try:
        return LIST_ENDPOINTS[name]
    except KeyError:
        raise KeyError(
            f"Unknown list endpoint {name!r}; known: {', '.join(sorted(LIST_ENDPOINTS))}"
        ) from None
