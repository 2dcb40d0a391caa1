"""Tests for the long-term memory service client."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from lenor.memory.remote import RemoteMemoryClient, RemoteMemoryError

BASE_URL = "https://memory.test"

Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler) -> RemoteMemoryClient:
    """Client whose HTTP traffic goes to handler."""
    http_client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return RemoteMemoryClient(BASE_URL, api_key="test-key", http_client=http_client)


class TestAppend:
    """Tests for appending messages."""

    @pytest.mark.asyncio
    async def test_append_maps_roles(self) -> None:
        """Test assistant messages are sent as role type 'ai'."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.append("conv-1", {"message_id": "m1", "role": "user", "content": "Hola"})
        await client.append("conv-1", {"message_id": "m2", "role": "assistant", "content": "Hi"})

        assert [r.url.path for r in requests] == ["/api/v2/sessions/conv-1/memory"] * 2
        bodies = [json.loads(r.content) for r in requests]
        assert bodies[0] == {"messages": [{"message_id": "m1", "role_type": "user", "content": "Hola"}]}
        assert bodies[1]["messages"][0]["role_type"] == "ai"

    @pytest.mark.asyncio
    async def test_append_server_error(self) -> None:
        """Test HTTP failures raise RemoteMemoryError."""
        client = make_client(lambda request: httpx.Response(500))
        with pytest.raises(RemoteMemoryError, match="Failed to append"):
            await client.append("conv-1", {"message_id": "m1", "role": "user", "content": "x"})

    @pytest.mark.asyncio
    async def test_append_invalid_session(self) -> None:
        """Test a blank session id is rejected before any request."""
        client = make_client(lambda request: pytest.fail("no request expected"))
        with pytest.raises(RemoteMemoryError, match="Invalid session id"):
            await client.append("  ", {"message_id": "m1", "role": "user", "content": "x"})

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        """Test connection failures raise RemoteMemoryError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = make_client(handler)
        with pytest.raises(RemoteMemoryError):
            await client.append("conv-1", {"message_id": "m1", "role": "user", "content": "x"})


class TestFetchAll:
    """Tests for fetching transcripts."""

    @pytest.mark.asyncio
    async def test_fetch_maps_roles(self) -> None:
        """Test the transcript comes back in order with local role names."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "messages": [
                        {"uuid": "u-1", "role_type": "user", "content": "Hola"},
                        {"message_id": "m-2", "role_type": "ai", "content": "Hi there"},
                    ]
                },
            )

        client = make_client(handler)
        transcript = await client.fetch_all("conv-1")

        assert transcript == [
            {"message_id": "u-1", "role": "user", "content": "Hola"},
            {"message_id": "m-2", "role": "assistant", "content": "Hi there"},
        ]

    @pytest.mark.asyncio
    async def test_fetch_unknown_session_creates_it(self) -> None:
        """Test a 404 creates the session and yields an empty transcript."""
        requests: list[tuple[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))
            if request.method == "GET":
                return httpx.Response(404)
            return httpx.Response(201, json={})

        client = make_client(handler)
        assert await client.fetch_all("conv-new") == []
        assert requests == [
            ("GET", "/api/v2/sessions/conv-new/memory"),
            ("POST", "/api/v2/sessions"),
        ]

    @pytest.mark.asyncio
    async def test_fetch_malformed_payload(self) -> None:
        """Test an unexpected body raises RemoteMemoryError."""
        client = make_client(lambda request: httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(RemoteMemoryError, match="Unexpected"):
            await client.fetch_all("conv-1")

    @pytest.mark.asyncio
    async def test_fetch_non_json(self) -> None:
        """Test a non-JSON body raises RemoteMemoryError."""
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(RemoteMemoryError):
            await client.fetch_all("conv-1")


class TestLifecycle:
    """Tests for client setup and teardown."""

    def test_authorization_header(self) -> None:
        """Test the API key is sent as a bearer token."""
        client = RemoteMemoryClient(BASE_URL + "/", api_key="secret")
        assert client.base_url == BASE_URL
        assert client._http_client.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, mock_httpx_client) -> None:
        """Test an injected HTTP client is not closed."""
        client = RemoteMemoryClient(BASE_URL, http_client=mock_httpx_client)
        await client.close()
        mock_httpx_client.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self) -> None:
        """Test the context manager closes a client it created."""
        async with RemoteMemoryClient(BASE_URL, api_key="k") as client:
            http_client = client._http_client
        assert http_client.is_closed
