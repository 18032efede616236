import httpx
import pytest
import respx

from dci_provider.shared.adapters.auth import AuthenticatedPipeline, StaticTokenSource
from dci_provider.shared.adapters.http_retry import ResilientTransport
from dci_provider.shared.adapters.list_endpoints import (
    LIST_ENDPOINTS,
    ListEndpoint,
    get_list_endpoint,
    parse_list_page,
)
from dci_provider.shared.adapters.pagination import PageRequest
from dci_provider.shared.core.exceptions import UnexpectedResponseError

API_HOST = "https://api.test.invalid"


def _pipeline(client) -> AuthenticatedPipeline:
    return AuthenticatedPipeline(ResilientTransport(client), StaticTokenSource("test-token"))


def test_parse_camel_case_envelope():
    response = httpx.Response(
        200, json={"alerts": [{"id": "a1"}], "pageToken": "next", "rowCount": 7}
    )

    page = parse_list_page(response, "alerts")

    assert page.items == [{"id": "a1"}]
    assert page.next_page_token == "next"
    assert page.row_count == 7


def test_parse_snake_case_envelope():
    response = httpx.Response(200, json={"alerts": [], "page_token": "n", "row_count": 0})

    page = parse_list_page(response, "alerts")

    assert page.next_page_token == "n"
    assert page.row_count == 0


def test_parse_missing_items_and_empty_token():
    page = parse_list_page(httpx.Response(200, json={"pageToken": ""}), "alerts")

    assert page.items == []
    assert page.next_page_token is None
    assert page.row_count is None


def test_parse_null_items_is_empty():
    page = parse_list_page(httpx.Response(200, json={"alerts": None}), "alerts")

    assert page.items == []


def test_parse_rejects_non_200_success():
    with pytest.raises(UnexpectedResponseError, match="API returned status 204") as excinfo:
        parse_list_page(httpx.Response(204), "alerts")

    assert excinfo.value.status_code == 204


def test_parse_rejects_invalid_json():
    with pytest.raises(UnexpectedResponseError, match="not valid JSON"):
        parse_list_page(httpx.Response(200, content=b"<html>"), "alerts")


def test_parse_rejects_non_object_body():
    with pytest.raises(UnexpectedResponseError, match="JSON object"):
        parse_list_page(httpx.Response(200, json=[{"id": 1}]), "alerts")


def test_parse_rejects_non_list_items():
    with pytest.raises(UnexpectedResponseError, match="must be an array"):
        parse_list_page(httpx.Response(200, json={"alerts": {"id": 1}}), "alerts")


def test_parse_rejects_malformed_row_count():
    with pytest.raises(UnexpectedResponseError, match="malformed paging fields"):
        parse_list_page(httpx.Response(200, json={"alerts": [], "rowCount": "many"}), "alerts")


def test_string_page_size_is_sent_as_given():
    endpoint = get_list_endpoint("alerts")

    params = endpoint.page_params(PageRequest(max_results=10, page_token="tok"))

    assert params == {"maxResults": "10", "pageToken": "tok"}


def test_integer_page_size_is_validated():
    endpoint = get_list_endpoint("invoices")

    assert endpoint.page_params(PageRequest(max_results="25")) == {"maxResults": 25}
    with pytest.raises(ValueError, match="must be an integer"):
        endpoint.page_size_value("ten")
    with pytest.raises(ValueError, match="> 0"):
        endpoint.page_size_value(0)


@pytest.mark.parametrize("bad", ["0", "-3", 0, "ten"])
def test_string_page_size_is_validated(bad):
    endpoint = get_list_endpoint("alerts")

    assert endpoint.page_size_value(" 25 ") == "25"
    with pytest.raises(ValueError, match="alerts: max_results"):
        endpoint.page_size_value(bad)


def test_unpaginated_endpoint_sends_no_paging_params():
    endpoint = get_list_endpoint("users")

    assert endpoint.paginated is False
    assert endpoint.page_params(PageRequest(max_results=5, page_token="x")) == {}


def test_registry_lookup():
    assert get_list_endpoint("cloud_incidents").items_key == "incidents"
    assert get_list_endpoint("support_requests").path == "/support/v1/tickets"
    assert all(name == endpoint.name for name, endpoint in LIST_ENDPOINTS.items())
    with pytest.raises(KeyError, match="known: "):
        get_list_endpoint("widgets")


@pytest.mark.asyncio
async def test_page_fetcher_merges_filters_with_paging_params(http_client):
    endpoint = ListEndpoint("reports", "/analytics/v1/reports", "reports")

    with respx.mock(base_url=API_HOST) as router:
        route = router.get("/analytics/v1/reports").mock(
            return_value=httpx.Response(
                200, json={"reports": [{"id": "r1"}], "pageToken": "p2", "rowCount": 3}
            )
        )

        fetch = endpoint.page_fetcher(_pipeline(http_client), {"filter": "owner:me"})
        page = await fetch(PageRequest(max_results="1", page_token="p1"))

    params = route.calls.last.request.url.params
    assert params["filter"] == "owner:me"
    assert params["maxResults"] == "1"
    assert params["pageToken"] == "p1"
    assert page.items == [{"id": "r1"}]
    assert page.next_page_token == "p2"
    assert page.row_count == 3


@pytest.mark.asyncio
async def test_page_fetcher_omits_absent_paging_params(http_client):
    endpoint = get_list_endpoint("budgets")

    with respx.mock(base_url=API_HOST) as router:
        route = router.get("/analytics/v1/budgets").mock(
            return_value=httpx.Response(200, json={"budgets": []})
        )

        await endpoint.page_fetcher(_pipeline(http_client))(PageRequest())

    params = route.calls.last.request.url.params
    assert "maxResults" not in params
    assert "pageToken" not in params
