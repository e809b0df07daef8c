"""Tests for AppClient and client_factory."""

from __future__ import annotations

import json

import httpx
import pytest

from switchyard.clients import AppClient, client_factory
from switchyard.config import SwitchyardConfig
from switchyard.errors import SessionError, WaitTimeoutError


def login_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/auth/login":
        body = json.loads(request.content)
        if body.get("password") != "secret":
            return httpx.Response(401, json={"error": "invalid credentials"})
        return httpx.Response(200, json={"token": "abc123", "user": {"email": body["email"]}})
    if request.url.path == "/api/me":
        return httpx.Response(200, json={"authorization": request.headers.get("Authorization")})
    return httpx.Response(404, text="not found")


@pytest.fixture
def client() -> AppClient:
    return AppClient("http://shop.test/", transport=httpx.MockTransport(login_handler))


class TestRequests:
    """Tests for request helpers and history."""

    @pytest.mark.asyncio
    async def test_request_recorded(self, client: AppClient) -> None:
        response = await client.get("/missing")

        assert response.status_code == 404
        record = client.last_request()
        assert record is not None
        assert record.method == "GET"
        assert record.url == "http://shop.test/missing"
        assert record.response_status == 404
        assert record.response_body == "not found"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_connects_lazily_and_disconnects(self, client: AppClient) -> None:
        assert not client.is_connected
        await client.get("/missing")
        assert client.is_connected
        await client.disconnect()
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_request_error_recorded_and_raised(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = AppClient("http://down.test", transport=httpx.MockTransport(refuse))

        with pytest.raises(httpx.ConnectError):
            await client.post("/api/orders", json={"sku": "A1"})

        record = client.last_request()
        assert record.response_status == 0
        assert record.error == "refused"
        assert record.request_body == {"sku": "A1"}
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_history_copy_and_clear(self, client: AppClient) -> None:
        await client.get("/missing")
        history = client.get_history()
        history.clear()

        assert len(client.get_history()) == 1
        client.clear_history()
        assert client.last_request() is None
        await client.disconnect()


class TestLogin:
    """Tests for API login."""

    @pytest.mark.asyncio
    async def test_login_sets_bearer_token(self, client: AppClient) -> None:
        result = await client.login({"email": "qa@example.com", "password": "secret"})
        me = await client.get("/api/me")

        assert result.token == "abc123"
        assert result.user == {"email": "qa@example.com"}
        assert me.json() == {"authorization": "Bearer abc123"}
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_login_rejected(self, client: AppClient) -> None:
        with pytest.raises(httpx.HTTPStatusError):
            await client.login({"email": "qa@example.com", "password": "wrong"})
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_login_without_token(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))
        client = AppClient("http://shop.test", transport=transport)

        with pytest.raises(SessionError, match="did not include a token"):
            await client.login({"email": "qa@example.com"})
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_login_accepts_access_token(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"access_token": "xyz"})
        )
        client = AppClient("http://shop.test", login_path="/oauth/token", transport=transport)

        result = await client.login({})

        assert result.token == "xyz"
        assert result.user is None
        assert client.last_request().url == "http://shop.test/oauth/token"
        await client.disconnect()


class TestWaitForCondition:
    """Tests for polling."""

    @pytest.mark.asyncio
    async def test_returns_first_accepted_value(self, client: AppClient) -> None:
        values = iter([1, 2, 3])

        result = await client.wait_for_condition(
            lambda: next(values), lambda v: v >= 2, timeout=1.0, interval=0.01
        )

        assert result == 2

    @pytest.mark.asyncio
    async def test_async_fn(self, client: AppClient) -> None:
        async def fetch() -> str:
            return "ready"

        assert await client.wait_for_condition(fetch, lambda v: v == "ready") == "ready"

    @pytest.mark.asyncio
    async def test_timeout(self, client: AppClient) -> None:
        with pytest.raises(WaitTimeoutError) as exc_info:
            await client.wait_for_condition(
                lambda: "pending",
                lambda v: v == "done",
                timeout=0.05,
                interval=0.02,
                description="order shipped",
            )

        error = exc_info.value
        assert error.is_timeout
        assert error.last_value == "pending"
        assert error.poll_attempts >= 1
        assert "order shipped" in str(error)


class TestClientFactory:
    """Tests for client_factory."""

    def test_uses_application_login_path(self) -> None:
        config = SwitchyardConfig(
            applications={"admin": {"base_url": "http://admin.test", "api_login_path": "/auth"}}
        )
        create = client_factory(config, timeout=5.0)

        client = create("admin", "http://admin.test")

        assert client.login_path == "/auth"
        assert client.timeout == 5.0
        assert client.base_url == "http://admin.test"

    def test_requires_base_url(self) -> None:
        create = client_factory(SwitchyardConfig())
        with pytest.raises(SessionError) as exc_info:
            create("shop", None)
        assert "applications.shop.base_url" in exc_info.value.suggestions[0]
