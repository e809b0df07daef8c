"""Interfaces of the collaborators a SessionRegistry drives.

The registry never talks to a browser or a network directly. It is
given factories that produce an actor handle (something that can be
brought to the foreground and navigated), a client channel bound to the
application, and an opaque locator helper per actor.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from switchyard.clients.http import LoginResult
    from switchyard.sessions.models import ApplicationSession


@runtime_checkable
class Actor(Protocol):
    """A UI actor handle, e.g. one browser page."""

    @property
    def url(self) -> str: ...

    def is_closed(self) -> bool: ...

    async def bring_to_front(self) -> None: ...

    async def wait_until_ready(self) -> None: ...

    async def goto(self, url: str) -> None: ...

    async def screenshot(self, path: str) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class ClientChannel(Protocol):
    """A client bound to one application's API."""

    async def login(self, credentials: Mapping[str, Any]) -> LoginResult: ...

    async def disconnect(self) -> None: ...


class ActorFactory(Protocol):
    """Creates the actor handle for an application."""

    async def __call__(self, app_id: str, base_url: str | None) -> Actor: ...


class ClientFactory(Protocol):
    """Creates the client channel for an application."""

    def __call__(self, app_id: str, base_url: str | None) -> ClientChannel: ...


class LocatorFactory(Protocol):
    """Creates the locator helper attached to an actor."""

    def __call__(self, actor: Actor) -> Any: ...


class UILogin(Protocol):
    """Performs a UI-level login for a session still on its login page."""

    async def __call__(
        self, session: ApplicationSession, credentials: Mapping[str, Any]
    ) -> None: ...
