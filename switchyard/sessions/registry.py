"""Session registry: one actor session per logical application.

The registry owns every ApplicationSession. Exactly one application is
"current" (in the foreground) at any time while the others stay alive
in the background. Switching is fully awaited before the caller
continues, so operations that depend on the current application never
overlap a switch.

Example:
    >>> registry = SessionRegistry(actor_factory, client_factory, config=config)
    >>> await registry.switch_to("shop")
    >>> await registry.authenticate("admin", {"email": "admin@example.com", "password": "pw"})
    >>> orders = await registry.execute_in_app("admin", list_orders)
    >>> registry.get_current_app()  # still "shop"
    'shop'
    >>> await registry.close_all()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

from switchyard.config import SwitchyardConfig
from switchyard.errors import (
    AuthenticationError,
    ErrorContext,
    SessionNotFoundError,
    SwitchFailedError,
)
from switchyard.sessions.models import ApplicationSession, ContextSwitchResult, SessionMetrics
from switchyard.sessions.protocols import (
    Actor,
    ActorFactory,
    ClientFactory,
    LocatorFactory,
    UILogin,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _resolve(value: Awaitable[T] | T) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


class SessionRegistry:
    """Manages the sessions of every application taking part in a test.

    Args:
        actor_factory: Async factory creating the actor handle for an app.
        client_factory: Factory creating the bound client channel.
        locator_factory: Factory creating the locator helper for an actor.
        config: Configuration providing application URLs, login paths,
            the default application and the switch history limit.
        ui_login: Coroutine performing a UI login when a session is still
            on its login page after the API login.
        history_limit: Overrides ``config.switch_history_limit``. None
            keeps an unbounded history.
    """

    def __init__(
        self,
        actor_factory: ActorFactory,
        client_factory: ClientFactory | None = None,
        locator_factory: LocatorFactory | None = None,
        *,
        config: SwitchyardConfig | None = None,
        ui_login: UILogin | None = None,
        history_limit: int | None = None,
    ) -> None:
        self.config = config or SwitchyardConfig()
        self._actor_factory = actor_factory
        self._client_factory = client_factory
        self._locator_factory = locator_factory
        self._ui_login = ui_login

        limit = history_limit if history_limit is not None else self.config.switch_history_limit
        self._history: deque[ContextSwitchResult] = deque(maxlen=limit)
        self._sessions: dict[str, ApplicationSession] = {}
        self._current_app: str | None = None
        self._init_lock = asyncio.Lock()

    async def __aenter__(self) -> SessionRegistry:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close_all()

    @property
    def sessions(self) -> dict[str, ApplicationSession]:
        """Live sessions keyed by app id (a copy)."""
        return dict(self._sessions)

    @property
    def current_session(self) -> ApplicationSession:
        """The session of the current application.

        Do not hold on to it across a later switch_to().

        Raises:
            SessionNotFoundError: If no application is current.
        """
        if self._current_app is None or self._current_app not in self._sessions:
            raise SessionNotFoundError("No application is current")
        return self._sessions[self._current_app]

    def get_current_app(self) -> str | None:
        return self._current_app

    def get_session(self, app_id: str) -> ApplicationSession | None:
        return self._sessions.get(app_id)

    def require_session(self, app_id: str) -> ApplicationSession:
        session = self._sessions.get(app_id)
        if session is None:
            raise SessionNotFoundError(
                f"No session registered for application '{app_id}'",
                context=ErrorContext(app_id=app_id),
            )
        return session

    def is_authenticated(self, app_id: str) -> bool:
        session = self._sessions.get(app_id)
        return bool(session and session.authenticated)

    def get_auth_token(self, app_id: str) -> str | None:
        session = self._sessions.get(app_id)
        return session.auth_token if session else None

    def get_user(self, app_id: str) -> Any:
        session = self._sessions.get(app_id)
        return session.user if session else None

    async def initialize_app(self, app_id: str, base_url: str | None = None) -> ApplicationSession:
        """Return the session for ``app_id``, creating it on first use.

        A new session gets a fresh actor handle, a client channel bound to
        the application's base URL and a locator helper for the actor.
        Calling this again for the same app id returns the same session.
        """
        existing = self._sessions.get(app_id)
        if existing is not None:
            return existing

        async with self._init_lock:
            existing = self._sessions.get(app_id)
            if existing is not None:
                return existing

            url = base_url or self.config.application(app_id).base_url
            actor = await self._actor_factory(app_id, url)
            try:
                client = self._client_factory(app_id, url) if self._client_factory else None
                locator = self._locator_factory(actor) if self._locator_factory else None
            except Exception:
                logger.warning(f"Session setup for {app_id} failed; closing its actor")
                await self._close_actor(app_id, actor)
                raise

            session = ApplicationSession(
                app_id=app_id,
                actor=actor,
                client=client,
                locator=locator,
                base_url=url,
            )
            self._sessions[app_id] = session
            logger.info(f"Initialized session for {app_id}")
            return session

    async def switch_to(self, app_id: str) -> ContextSwitchResult:
        """Bring ``app_id`` to the foreground.

        Never raises. On failure the current application is left
        unchanged and the error is recorded in the returned result, which
        is also appended to the switch history.
        """
        previous = self._current_app
        start = time.perf_counter()

        try:
            session = await self.initialize_app(app_id)
            await session.actor.bring_to_front()
            await session.actor.wait_until_ready()
        except Exception as e:
            result = ContextSwitchResult(
                previous_app=previous,
                current_app=app_id,
                duration_ms=(time.perf_counter() - start) * 1000,
                success=False,
                error=str(e) or type(e).__name__,
            )
            logger.warning(f"Failed to switch from {previous} to {app_id}: {result.error}")
        else:
            self._current_app = app_id
            result = ContextSwitchResult(
                previous_app=previous,
                current_app=app_id,
                duration_ms=(time.perf_counter() - start) * 1000,
                success=True,
            )
            logger.debug(f"Switched from {previous} to {app_id} in {result.duration_ms:.1f}ms")

        self._history.append(result)
        return result

    async def authenticate(
        self, app_id: str, credentials: Mapping[str, Any]
    ) -> ApplicationSession:
        """Authenticate against ``app_id``.

        Returns at once when the session is already authenticated.
        Otherwise logs in through the client channel, then through the UI
        if the actor is still on the application's login page. The session
        is only marked authenticated when at least one of the two ran.

        Raises:
            AuthenticationError: Wrapping whatever made the login fail, or
                when neither an API nor a UI login was possible.
        """
        switch = await self.switch_to(app_id)
        if not switch.success:
            cause = SwitchFailedError(
                f"Failed to switch to {app_id}: {switch.error}",
                context=ErrorContext(app_id=app_id),
            )
            raise AuthenticationError(app_id, cause=cause) from cause

        session = self._sessions[app_id]
        if session.authenticated:
            return session

        logged_in = False
        try:
            if session.client is not None:
                login = await session.client.login(credentials)
                session.auth_token = login.token
                session.user = login.user
                logged_in = True

            if self._ui_login is not None and self._on_login_page(session):
                await self._ui_login(session, credentials)
                logged_in = True
        except Exception as e:
            logger.error(f"Authentication failed for {app_id}: {e}")
            raise AuthenticationError(app_id, cause=e) from e

        if not logged_in:
            raise AuthenticationError(
                app_id,
                message=f"No login method ran for {app_id}: no client channel and not on a login page",
            )

        session.authenticated = True
        logger.info(f"Authenticated {app_id}")
        return session

    def _on_login_page(self, session: ApplicationSession) -> bool:
        login_path = self.config.application(session.app_id).login_path
        return login_path in (session.actor.url or "")

    async def navigate_to(self, path: str) -> None:
        """Navigate the current application's actor.

        Relative paths are resolved against the session's base URL.
        """
        session = self.current_session
        url = path
        if session.base_url and not path.startswith(("http://", "https://")):
            url = f"{session.base_url}/{path.lstrip('/')}"
        await session.actor.goto(url)

    async def execute_in_app(
        self,
        app_id: str,
        fn: Callable[[ApplicationSession], Awaitable[T] | T],
    ) -> T:
        """Run ``fn`` with ``app_id`` in the foreground, then switch back.

        The application that was current before the call is restored
        whether ``fn`` returns or raises. When no application was current,
        none is current afterwards.

        Raises:
            SwitchFailedError: If ``app_id`` could not be brought forward.
        """
        previous = self._current_app
        try:
            switch = await self.switch_to(app_id)
            if not switch.success:
                raise SwitchFailedError(
                    f"Failed to switch to {app_id}: {switch.error}",
                    context=ErrorContext(app_id=app_id),
                )
            return await _resolve(fn(self._sessions[app_id]))
        finally:
            if previous is None:
                self._current_app = None
            elif self._current_app != previous:
                restore = await self.switch_to(previous)
                if not restore.success:
                    logger.warning(f"Could not restore {previous} after running in {app_id}")

    async def execute_in_all_apps(
        self,
        fn: Callable[[str, ApplicationSession], Awaitable[T] | T],
    ) -> dict[str, T]:
        """Run ``fn`` in every registered application, one after another.

        Raises:
            SwitchFailedError: If an application could not be brought forward.
        """
        results: dict[str, T] = {}
        for app_id in list(self._sessions):
            switch = await self.switch_to(app_id)
            if not switch.success:
                raise SwitchFailedError(
                    f"Failed to switch to {app_id}: {switch.error}",
                    context=ErrorContext(app_id=app_id),
                )
            results[app_id] = await _resolve(fn(app_id, self._sessions[app_id]))
        return results

    async def wait_for_condition_across_apps(
        self,
        condition: Callable[[str, ApplicationSession], Awaitable[bool] | bool],
        timeout: float = 30.0,
        interval: float = 1.0,
        apps: Iterable[str] | None = None,
    ) -> str | None:
        """Poll applications round-robin until one satisfies ``condition``.

        Each application is switched to before it is checked. Only
        applications with a live session are polled.

        Returns:
            The first app id for which the condition held, or None when
            ``timeout`` seconds passed without a match.
        """
        targets = list(apps) if apps is not None else list(self._sessions)
        start = time.monotonic()

        while time.monotonic() - start < timeout:
            for app_id in targets:
                session = self._sessions.get(app_id)
                if session is None:
                    continue
                switch = await self.switch_to(app_id)
                if not switch.success:
                    continue
                if await _resolve(condition(app_id, session)):
                    return app_id
            await asyncio.sleep(interval)

        return None

    async def close_app(self, app_id: str) -> None:
        """Close one application's session.

        When the closed application was current, the remaining sessions
        are tried in registration order and the first one that can be
        brought forward becomes current. If none can, no application is
        current.
        """
        session = self._sessions.pop(app_id, None)
        if session is None:
            return

        await self._release(session)
        logger.info(f"Closed session for {app_id}")

        if self._current_app == app_id:
            self._current_app = None
            for remaining in list(self._sessions):
                switch = await self.switch_to(remaining)
                if switch.success:
                    break
            else:
                if self._sessions:
                    logger.warning(
                        f"Closed current app {app_id}; no remaining session could be brought forward"
                    )

    async def close_all(self) -> None:
        """Close every session and forget the switch history."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self._release(session)
        self._history.clear()
        self._current_app = None

    async def _close_actor(self, app_id: str, actor: Actor) -> None:
        try:
            if not actor.is_closed():
                await actor.close()
        except Exception as e:
            logger.warning(f"Error closing actor for {app_id}: {e}")

    async def _release(self, session: ApplicationSession) -> None:
        await self._close_actor(session.app_id, session.actor)

        if session.client is not None:
            try:
                await session.client.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting client for {session.app_id}: {e}")

    def get_switch_history(self) -> list[ContextSwitchResult]:
        return list(self._history)

    def clear_switch_history(self) -> None:
        self._history.clear()

    def get_metrics(self) -> SessionMetrics:
        """Switch count, mean switch duration, success rate and session count."""
        history = list(self._history)
        total = len(history)
        if total == 0:
            return SessionMetrics(
                total_switches=0,
                average_switch_time_ms=0.0,
                success_rate=1.0,
                session_count=len(self._sessions),
            )
        return SessionMetrics(
            total_switches=total,
            average_switch_time_ms=sum(r.duration_ms for r in history) / total,
            success_rate=sum(1 for r in history if r.success) / total,
            session_count=len(self._sessions),
        )
