"""Pytest fixtures for Switchyard tests."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from switchyard.clients import LoginResult
from switchyard.config import SwitchyardConfig
from switchyard.sessions import SessionRegistry


class FakeActor:
    """In-memory actor handle recording what was done to it."""

    def __init__(self, app_id: str, base_url: str | None = None) -> None:
        self.app_id = app_id
        self.url = base_url or "about:blank"
        self.closed = False
        self.fail_on_front = False
        self.front_count = 0
        self.visited: list[str] = []
        self.screenshots: list[str] = []

    def is_closed(self) -> bool:
        return self.closed

    async def bring_to_front(self) -> None:
        if self.fail_on_front:
            raise RuntimeError(f"{self.app_id} is unavailable")
        self.front_count += 1

    async def wait_until_ready(self) -> None:
        return None

    async def goto(self, url: str) -> None:
        self.url = url
        self.visited.append(url)

    async def screenshot(self, path: str) -> None:
        Path(path).write_bytes(b"\x89PNG")
        self.screenshots.append(path)

    async def close(self) -> None:
        self.closed = True


class FakeActorFactory:
    """Creates FakeActors; app ids in ``failing`` cannot be brought forward."""

    def __init__(self) -> None:
        self.actors: dict[str, FakeActor] = {}
        self.created: list[str] = []
        self.all_actors: list[FakeActor] = []
        self.failing: set[str] = set()

    async def __call__(self, app_id: str, base_url: str | None) -> FakeActor:
        actor = FakeActor(app_id, base_url)
        actor.fail_on_front = app_id in self.failing
        self.actors[app_id] = actor
        self.created.append(app_id)
        self.all_actors.append(actor)
        return actor


class FakeClient:
    """Client channel returning a token per application."""

    def __init__(self, app_id: str, base_url: str | None = None) -> None:
        self.app_id = app_id
        self.base_url = base_url
        self.logins: list[dict[str, Any]] = []
        self.disconnected = False
        self.error: Exception | None = None

    async def login(self, credentials: Mapping[str, Any]) -> LoginResult:
        if self.error is not None:
            raise self.error
        self.logins.append(dict(credentials))
        return LoginResult(token=f"token-{self.app_id}", user={"email": credentials.get("email")})

    async def disconnect(self) -> None:
        self.disconnected = True


class FakeClientFactory:
    def __init__(self) -> None:
        self.clients: dict[str, FakeClient] = {}

    def __call__(self, app_id: str, base_url: str | None) -> FakeClient:
        client = FakeClient(app_id, base_url)
        self.clients[app_id] = client
        return client


@pytest.fixture
def config() -> SwitchyardConfig:
    return SwitchyardConfig(
        applications={
            "alpha": {"base_url": "http://alpha.test"},
            "beta": {"base_url": "http://beta.test"},
            "gamma": {"base_url": "http://gamma.test"},
        },
    )


@pytest.fixture
def actor_factory() -> FakeActorFactory:
    return FakeActorFactory()


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def registry(
    actor_factory: FakeActorFactory,
    client_factory: FakeClientFactory,
    config: SwitchyardConfig,
) -> SessionRegistry:
    return SessionRegistry(actor_factory, client_factory, config=config)
