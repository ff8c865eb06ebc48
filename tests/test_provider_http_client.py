"""
Tests for the aiohttp provider transport against a local aiohttp test server
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from services.provider_errors import (
    ProviderHttpError,
    ProviderResponseParseError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from services.provider_http_client import ProviderHttpClient
from services.provider_order_forwarder import OrderSubmission, ProviderOrderForwarder
from services.provider_request_builder import BodyEncoding, ProviderRequest


async def _status_handler(request):
    form = await request.post()
    if form.get("key") != "k-123456":
        return web.json_response({"error": "Invalid API key"}, status=401)
    return web.json_response({"status": "Completed", "order": form.get("order"), "remains": "0"})


async def _json_handler(request):
    body = await request.json()
    return web.json_response({"echo": body, "auth": request.headers.get("X-API-Key")})


async def _empty_handler(request):
    return web.Response(text="")


async def _slow_handler(request):
    await asyncio.sleep(1)
    return web.json_response({"status": "Completed"})


async def _broken_handler(request):
    return web.Response(text="upstream exploded", status=500)


async def _garbled_handler(request):
    return web.Response(body=b'\xff\xfe{"order": 1}', content_type="application/json", charset="utf-8")


@pytest_asyncio.fixture
async def provider_server():
    app = web.Application()
    app.router.add_post("/api/v2", _status_handler)
    app.router.add_post("/json", _json_handler)
    app.router.add_post("/empty", _empty_handler)
    app.router.add_post("/slow", _slow_handler)
    app.router.add_post("/broken", _broken_handler)
    app.router.add_route("*", "/garbled", _garbled_handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def client():
    client = ProviderHttpClient()
    yield client
    await client.close()


def form_request(url, key="k-123456"):
    return ProviderRequest(
        url=url, method="POST", body={"key": key, "action": "status", "order": "42"},
        encoding=BodyEncoding.FORM,
    )


class TestProviderHttpClient:

    @pytest.mark.asyncio
    async def test_form_post_decodes_json(self, provider_server, client):
        payload = await client.send(form_request(str(provider_server.make_url("/api/v2"))), 5)
        assert payload == {"status": "Completed", "order": "42", "remains": "0"}

    @pytest.mark.asyncio
    async def test_json_body_and_header(self, provider_server, client):
        request = ProviderRequest(
            url=str(provider_server.make_url("/json")), method="POST",
            headers={"X-API-Key": "k-1"}, body={"action": "status", "order": "1"},
            encoding=BodyEncoding.JSON,
        )
        payload = await client.send(request, 5)
        assert payload["echo"] == {"action": "status", "order": "1"}
        assert payload["auth"] == "k-1"

    @pytest.mark.asyncio
    async def test_http_error_uses_provider_message(self, provider_server, client):
        with pytest.raises(ProviderHttpError) as exc_info:
            await client.send(form_request(str(provider_server.make_url("/api/v2")), key="wrong"), 5)
        assert exc_info.value.status == 401
        assert exc_info.value.message == "HTTP 401: Invalid API key"

    @pytest.mark.asyncio
    async def test_http_error_with_plain_body(self, provider_server, client):
        with pytest.raises(ProviderHttpError) as exc_info:
            await client.send(form_request(str(provider_server.make_url("/broken"))), 5)
        assert exc_info.value.message == "HTTP 500: upstream exploded"

    @pytest.mark.asyncio
    async def test_empty_body_is_parse_error(self, provider_server, client):
        with pytest.raises(ProviderResponseParseError, match="Empty response"):
            await client.send(form_request(str(provider_server.make_url("/empty"))), 5)

    @pytest.mark.asyncio
    async def test_timeout(self, provider_server, client):
        with pytest.raises(ProviderTimeoutError, match="timed out"):
            await client.send(form_request(str(provider_server.make_url("/slow"))), 0.2)

    @pytest.mark.asyncio
    async def test_connection_refused(self, client):
        with pytest.raises(ProviderTransportError):
            await client.send(form_request("http://127.0.0.1:1/api/v2"), 2)

    @pytest.mark.asyncio
    async def test_body_not_in_declared_charset_is_parse_error(self, provider_server, client):
        with pytest.raises(ProviderResponseParseError, match="Undecodable utf-8 body"):
            await client.send(form_request(str(provider_server.make_url("/garbled"))), 5)


class TestForwarderOverHttp:

    @pytest.mark.asyncio
    async def test_undecodable_body_comes_back_as_error_result(self, provider_server, client, factory):
        provider = await factory.create_provider(api_url=str(provider_server.make_url("/garbled")))
        forwarder = ProviderOrderForwarder(http_client=client)

        result = await forwarder.forward_order_to_provider(
            provider, OrderSubmission(service="101", link="https://x.example/p", quantity=500)
        )

        assert not result.ok
        assert result.order is None
        assert "Undecodable utf-8 body" in result.error
