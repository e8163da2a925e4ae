import httpx
import pytest

from tvtracker.exceptions import CatalogError
from tvtracker.services.catalog import TVMazeClient, with_rate_limit_retry


def client_for(handler) -> TVMazeClient:
    return TVMazeClient(base_url="https://catalog.test", timeout_ms=10000, transport=httpx.MockTransport(handler))


async def test_fetch_show_with_embedded_episodes_requests_embed():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = request.url
        return httpx.Response(200, json={"id": 1, "name": "Severance"})

    result = await client_for(handler).fetch_show_with_embedded_episodes("1")

    assert result["name"] == "Severance"
    assert seen["url"].path == "/shows/1"
    assert seen["url"].params["embed"] == "episodes"


async def test_http_error_carries_reason_and_status():
    client = client_for(lambda request: httpx.Response(404, json={}))

    with pytest.raises(CatalogError) as excinfo:
        await client.fetch_show_with_embedded_episodes("42")

    assert excinfo.value.message == "Failed to fetch show with ID 42: Not Found"
    assert excinfo.value.status_code == 404


async def test_search_error_message():
    client = client_for(lambda request: httpx.Response(500, json={}))

    with pytest.raises(CatalogError) as excinfo:
        await client.fetch_search_results("dark")

    assert excinfo.value.message == 'Failed to search for shows with query "dark": Internal Server Error'
    assert excinfo.value.status_code == 500


async def test_timeout_is_reported_in_milliseconds():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(CatalogError) as excinfo:
        await client_for(handler).fetch_show("1")

    assert excinfo.value.message == "Request timeout after 10000ms"
    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.cause, httpx.TimeoutException)


async def test_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CatalogError) as excinfo:
        await client_for(handler).fetch_episode("7")

    assert excinfo.value.message == "Network error while fetching https://catalog.test/episodes/7"


async def test_invalid_json():
    client = client_for(lambda request: httpx.Response(200, content=b"<html>"))

    with pytest.raises(CatalogError) as excinfo:
        await client.fetch_show("1")

    assert excinfo.value.message == "Failed to parse JSON response from https://catalog.test/shows/1"


async def test_show_must_be_an_object():
    client = client_for(lambda request: httpx.Response(200, json=[1, 2]))

    with pytest.raises(CatalogError) as excinfo:
        await client.fetch_show_with_embedded_episodes("5")

    assert excinfo.value.message == "Invalid response format for show with ID 5"


async def test_search_must_be_a_list():
    client = client_for(lambda request: httpx.Response(200, json={"show": {}}))

    with pytest.raises(CatalogError):
        await client.fetch_search_results("x")


async def test_rate_limit_retry_succeeds_after_429():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(429, json={})
        return httpx.Response(200, json={"id": 1})

    client = client_for(handler)
    result = await with_rate_limit_retry(client.fetch_show, "1", wait_seconds=0)

    assert result == {"id": 1}
    assert len(calls) == 3


async def test_rate_limit_retry_gives_up():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429, json={})

    client = client_for(handler)
    with pytest.raises(CatalogError) as excinfo:
        await with_rate_limit_retry(client.fetch_show, "1", wait_seconds=0)

    assert excinfo.value.status_code == 429
    assert len(calls) == 4


async def test_rate_limit_retry_does_not_retry_other_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={})

    with pytest.raises(CatalogError):
        await with_rate_limit_retry(client_for(handler).fetch_show, "1", wait_seconds=0)

    assert len(calls) == 1


def test_explicit_timeout_is_kept():
    assert TVMazeClient(timeout_ms=0).timeout_ms == 0
    assert TVMazeClient(timeout_ms=2500).timeout_ms == 2500
    assert TVMazeClient().timeout_ms == 10000
