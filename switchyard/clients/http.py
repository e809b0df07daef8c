"""Async HTTP client bound to one application.

Each application session owns one AppClient pointed at that
application's base URL. Besides generic request helpers it knows how to
log in against the application's API and how to poll an endpoint until
a condition holds.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from switchyard.config import SwitchyardConfig
from switchyard.errors import SessionError, WaitTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class RequestRecord:
    """Record of an HTTP request/response."""

    method: str
    url: str
    request_body: Any | None
    response_status: int
    response_body: Any | None
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)
    error: str | None = None


@dataclass(frozen=True)
class LoginResult:
    """Outcome of an API login."""

    token: str
    user: Any = None


class AppClient:
    """Async HTTP client with request history and bearer authentication.

    Example:
        >>> client = AppClient("http://localhost:3000")
        >>> result = await client.login({"email": "qa@example.com", "password": "pw"})
        >>> response = await client.get("/api/orders")
        >>> await client.disconnect()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        login_path: str = "/api/auth/login",
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.login_path = login_path
        self.default_headers = default_headers or {}
        self.history: list[RequestRecord] = []
        self._transport = transport
        self._auth_token: str | None = None
        self._client: httpx.AsyncClient | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.default_headers,
            transport=self._transport,
        )
        logger.debug(f"HTTP client connected to {self.base_url}")

    async def disconnect(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def set_auth_token(self, token: str, scheme: str = "Bearer") -> None:
        """Set authentication token for subsequent requests."""
        self._auth_token = f"{scheme} {token}"

    def clear_auth(self) -> None:
        self._auth_token = None

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request and record it in the history."""
        if self._client is None:
            await self.connect()
        assert self._client is not None

        headers = dict(kwargs.pop("headers", None) or {})
        if self._auth_token:
            headers["Authorization"] = self._auth_token

        url = f"{self.base_url}{path}" if path.startswith("/") else f"{self.base_url}/{path}"
        request_body = kwargs.get("json") or kwargs.get("data") or kwargs.get("content")

        start_time = time.perf_counter()
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            self.history.append(
                RequestRecord(
                    method=method,
                    url=url,
                    request_body=request_body,
                    response_status=0,
                    response_body=None,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                    error=str(e),
                )
            )
            logger.error(f"Request error: {method} {url}: {e}")
            raise

        self.history.append(
            RequestRecord(
                method=method,
                url=url,
                request_body=request_body,
                response_status=response.status_code,
                response_body=self._safe_json(response),
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
        )
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def login(self, credentials: Mapping[str, Any]) -> LoginResult:
        """Log in through the API and keep the returned token.

        The response body must carry ``token`` (or ``access_token``) and
        may carry ``user``.

        Raises:
            httpx.HTTPStatusError: If the login endpoint rejects the request.
            SessionError: If the response does not contain a token.
        """
        response = await self.post(self.login_path, json=dict(credentials))
        response.raise_for_status()

        body = self._safe_json(response)
        if not isinstance(body, dict):
            raise SessionError(f"Login response from {self.base_url} is not a JSON object")

        token = body.get("token") or body.get("access_token")
        if not token:
            raise SessionError(f"Login response from {self.base_url} did not include a token")

        self.set_auth_token(token)
        return LoginResult(token=token, user=body.get("user"))

    async def wait_for_condition(
        self,
        fn: Callable[[], Awaitable[Any] | Any],
        predicate: Callable[[Any], bool],
        timeout: float = 30.0,
        interval: float = 1.0,
        description: str | None = None,
    ) -> Any:
        """Poll ``fn`` until ``predicate`` accepts its value.

        Args:
            fn: Callable producing the value to check (sync or async).
            predicate: Returns True once the value is acceptable.
            timeout: Maximum seconds to wait.
            interval: Seconds to sleep between polls.
            description: Condition description for the timeout error.

        Returns:
            The first value accepted by ``predicate``.

        Raises:
            WaitTimeoutError: If the condition does not hold before timeout.
        """
        start = time.monotonic()
        attempts = 0
        last_value: Any = None

        while True:
            attempts += 1
            value = fn()
            if inspect.isawaitable(value):
                value = await value
            last_value = value
            if predicate(value):
                return value

            elapsed = time.monotonic() - start
            if elapsed + interval > timeout:
                raise WaitTimeoutError(
                    condition_description=description,
                    timeout_seconds=timeout,
                    elapsed_seconds=elapsed,
                    poll_attempts=attempts,
                    last_value=last_value,
                )
            await asyncio.sleep(interval)

    def _safe_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def get_history(self) -> list[RequestRecord]:
        return self.history.copy()

    def clear_history(self) -> None:
        self.history.clear()

    def last_request(self) -> RequestRecord | None:
        return self.history[-1] if self.history else None


def client_factory(
    config: SwitchyardConfig,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[str, str | None], AppClient]:
    """Build a SessionRegistry client factory from configuration.

    The returned factory creates an AppClient per application, using the
    application's configured API login path.
    """

    def create(app_id: str, base_url: str | None) -> AppClient:
        if not base_url:
            raise SessionError(
                f"No base_url configured for application '{app_id}'",
                suggestions=[f"Set applications.{app_id}.base_url in switchyard.yaml"],
            )
        return AppClient(
            base_url,
            timeout=timeout,
            login_path=config.application(app_id).api_login_path,
            transport=transport,
        )

    return create
