import httpx
import pytest

from connsync.domain.interfaces.transport import (
    RequestTarget,
    TransportNetworkError,
    TransportTimeoutError,
)
from connsync.infrastructure.auth.credentials import StaticCredentialProvider
from connsync.infrastructure.transport.http_transport import HttpTransport

TARGET = RequestTarget(url="https://api.example/items", params={"start": 0, "count": 10}, label="items")


def make_transport(handler, credentials=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTransport(credentials=credentials, base_headers={"accept": "application/json"}, client=client), client


@pytest.mark.asyncio
async def test_execute_sends_params_and_merged_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        return httpx.Response(200, json={"elements": []})

    credentials = StaticCredentialProvider({"csrf-token": "abc", "accept": "overridden"})
    transport, client = make_transport(handler, credentials)

    response = await transport.execute(TARGET, {"x-trace": "1"}, timeout=5)

    assert response.status == 200
    assert response.body == {"elements": []}
    assert "start=0" in seen["url"] and "count=10" in seen["url"]
    assert seen["headers"]["csrf-token"] == "abc"
    assert seen["headers"]["accept"] == "overridden"
    assert seen["headers"]["x-trace"] == "1"
    await client.aclose()


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised():
    transport, client = make_transport(
        lambda request: httpx.Response(429, headers={"Retry-After": "7"}, text="slow down")
    )

    response = await transport.execute(TARGET, {}, timeout=5)

    assert response.status == 429
    assert response.body == "slow down"
    assert response.header("retry-after") == "7"
    await client.aclose()


@pytest.mark.asyncio
async def test_timeout_is_mapped():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    transport, client = make_transport(handler)
    with pytest.raises(TransportTimeoutError):
        await transport.execute(TARGET, {}, timeout=1)
    await client.aclose()


@pytest.mark.asyncio
async def test_connection_error_is_mapped():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    transport, client = make_transport(handler)
    with pytest.raises(TransportNetworkError):
        await transport.execute(TARGET, {}, timeout=1)
    await client.aclose()


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    transport, client = make_transport(lambda request: httpx.Response(204))
    await transport.close()
    assert not client.is_closed
    await client.aclose()


@pytest.mark.asyncio
async def test_close_closes_owned_client():
    transport = HttpTransport()
    await transport.close()
    assert transport._client.is_closed
