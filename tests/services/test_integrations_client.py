"""Tests for IntegrationsClient using httpx.MockTransport."""

import json

import httpx
import pytest

from src.errors.domain import IntegrationError
from src.services.integrations_client import (
    Connection,
    IntegrationsClient,
    is_toolkit_connected,
)


def _client(handler, **kwargs) -> IntegrationsClient:
    return IntegrationsClient(
        api_key="test-key",
        base_url="https://integrations.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _accounts(*items):
    return httpx.Response(200, json={"items": list(items)})


GMAIL_ACTIVE = {"id": "ca_1", "toolkit": {"slug": "gmail"}, "status": "ACTIVE"}
SLACK_PENDING = {"id": "ca_2", "toolkit": {"slug": "slack"}, "status": "INITIATED"}


class TestConnectionParsing:
    def test_v3_shape(self):
        conn = Connection.from_api(GMAIL_ACTIVE)
        assert conn == Connection(id="ca_1", toolkit_id="gmail", status="ACTIVE")
        assert conn.is_active

    def test_legacy_shape(self):
        conn = Connection.from_api({"nanoid": "x", "appName": "GitHub", "status": "active"})
        assert conn.toolkit_id == "github"
        assert conn.is_active

    def test_connected_requires_active_status(self):
        conns = [Connection.from_api(GMAIL_ACTIVE), Connection.from_api(SLACK_PENDING)]
        assert is_toolkit_connected(conns, "GMAIL") is True
        assert is_toolkit_connected(conns, "slack") is False


class TestListConnections:
    @pytest.mark.asyncio
    async def test_sends_key_and_user(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.headers.get("x-api-key")
            seen["user_ids"] = request.url.params.get("user_ids")
            return _accounts(GMAIL_ACTIVE, SLACK_PENDING)

        async with _client(handler) as client:
            connections = await client.list_connections("user-1")
        assert [c.toolkit_id for c in connections] == ["gmail", "slack"]
        assert seen == {"key": "test-key", "user_ids": "user-1"}

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self):
        def handler(request):
            return httpx.Response(500, json={"error": {"message": "boom"}})

        async with _client(handler) as client:
            assert await client.list_connections("user-1") == []


class TestInitiateConnection:
    @pytest.mark.asyncio
    async def test_returns_redirect(self):
        def handler(request):
            if request.url.path.endswith("/link"):
                assert json.loads(request.content) == {"toolkit": "gmail"}
                return httpx.Response(200, json={
                    "redirect_url": "https://auth.example/start",
                    "connected_account_id": "ca_9",
                })
            return httpx.Response(200, json={"session_id": "trs_1"})

        async with _client(handler) as client:
            result = await client.initiate_connection("user-1", " Gmail ")
        assert result == {
            "success": True,
            "redirect_url": "https://auth.example/start",
            "connection_id": "ca_9",
        }

    @pytest.mark.asyncio
    async def test_service_error(self):
        def handler(request):
            return httpx.Response(400, json={"message": "unknown toolkit"})

        async with _client(handler) as client:
            result = await client.initiate_connection("user-1", "nope")
        assert result["success"] is False
        assert "unknown toolkit" in result["error"]

    @pytest.mark.asyncio
    async def test_blank_toolkit(self):
        async with _client(lambda r: httpx.Response(200)) as client:
            assert (await client.initiate_connection("user-1", "  "))["success"] is False


class TestDeleteConnection:
    @pytest.mark.asyncio
    async def test_success(self):
        def handler(request):
            assert request.method == "DELETE"
            assert request.url.path.endswith("/ca_1")
            return httpx.Response(204)

        async with _client(handler) as client:
            assert await client.delete_connection("ca_1") == {"success": True}

    @pytest.mark.asyncio
    async def test_failure(self):
        async with _client(lambda r: httpx.Response(404, text="missing")) as client:
            result = await client.delete_connection("ca_1")
        assert result == {"success": False, "error": "missing"}


class TestWaitForConnection:
    @pytest.mark.asyncio
    async def test_becomes_active(self):
        responses = iter([_accounts(SLACK_PENDING), _accounts({**SLACK_PENDING, "status": "ACTIVE"})])

        async with _client(lambda r: next(responses), poll_interval=0.01, poll_timeout=1.0) as client:
            assert await client.wait_for_connection("user-1", "slack") is True

    @pytest.mark.asyncio
    async def test_times_out(self):
        async with _client(lambda r: _accounts(SLACK_PENDING), poll_interval=0.01, poll_timeout=0.03) as client:
            assert await client.wait_for_connection("user-1", "slack") is False


class TestTools:
    @pytest.mark.asyncio
    async def test_list_tools(self):
        def handler(request):
            assert "COMPOSIO_SEARCH_TOOLS" in request.url.params["tool_slugs"]
            return httpx.Response(200, json={"items": [
                {"slug": "COMPOSIO_SEARCH_TOOLS", "description": "Find tools",
                 "input_parameters": {"type": "object", "properties": {"queries": {}}}},
                {"description": "no slug"},
            ]})

        async with _client(handler) as client:
            tools = await client.list_tools("user-1")
        assert tools == [{
            "name": "COMPOSIO_SEARCH_TOOLS",
            "description": "Find tools",
            "input_schema": {"type": "object", "properties": {"queries": {}}},
        }]

    @pytest.mark.asyncio
    async def test_list_tools_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(IntegrationError):
                await client.list_tools("user-1")

    @pytest.mark.asyncio
    async def test_execute_tool(self):
        def handler(request):
            assert request.url.path == "/api/v3/tools/execute/GMAIL_SEND_EMAIL"
            body = json.loads(request.content)
            assert body == {"user_id": "user-1", "arguments": {"to": "a@example.com"}}
            return httpx.Response(200, json={"successful": True, "data": {"id": "m1"}})

        async with _client(handler) as client:
            result = await client.execute_tool("user-1", "GMAIL_SEND_EMAIL", {"to": "a@example.com"})
        assert result["successful"] is True

    @pytest.mark.asyncio
    async def test_execute_tool_error_is_returned(self):
        async with _client(lambda r: httpx.Response(502, json={"error": "upstream"})) as client:
            result = await client.execute_tool("user-1", "GMAIL_SEND_EMAIL", {})
        assert result == {"successful": False, "error": "upstream"}
