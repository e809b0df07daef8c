"""Tests for SessionRegistry."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from switchyard.errors import AuthenticationError, SessionNotFoundError, SwitchFailedError
from switchyard.sessions import SessionRegistry

from .conftest import FakeActorFactory, FakeClientFactory


class TestInitialization:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_initialize_twice_returns_same_session(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        first = await registry.initialize_app("alpha")
        second = await registry.initialize_app("alpha")

        assert first is second
        assert actor_factory.created == ["alpha"]

    @pytest.mark.asyncio
    async def test_initialize_uses_configured_base_url(
        self, registry: SessionRegistry, client_factory: FakeClientFactory
    ) -> None:
        session = await registry.initialize_app("beta")

        assert session.base_url == "http://beta.test"
        assert session.actor.url == "http://beta.test"
        assert client_factory.clients["beta"].base_url == "http://beta.test"

    @pytest.mark.asyncio
    async def test_explicit_base_url_wins(self, registry: SessionRegistry) -> None:
        session = await registry.initialize_app("alpha", "http://override.test")
        assert session.base_url == "http://override.test"

    @pytest.mark.asyncio
    async def test_locator_factory_receives_actor(
        self, actor_factory: FakeActorFactory
    ) -> None:
        registry = SessionRegistry(actor_factory, locator_factory=lambda actor: ("locator", actor))
        session = await registry.initialize_app("alpha", "http://alpha.test")

        assert session.locator == ("locator", session.actor)
        assert session.client is None

    @pytest.mark.asyncio
    async def test_failed_client_factory_closes_actor(
        self, actor_factory: FakeActorFactory, config
    ) -> None:
        def broken_client(app_id, base_url):
            raise ConnectionError("api unreachable")

        registry = SessionRegistry(actor_factory, broken_client, config=config)

        first = await registry.switch_to("alpha")
        second = await registry.switch_to("alpha")

        assert not first.success
        assert not second.success
        assert len(actor_factory.all_actors) == 2
        assert all(actor.closed for actor in actor_factory.all_actors)
        assert registry.get_session("alpha") is None

    @pytest.mark.asyncio
    async def test_failed_locator_factory_closes_actor(
        self, actor_factory: FakeActorFactory, config
    ) -> None:
        def broken_locator(actor):
            raise ValueError("no locator")

        registry = SessionRegistry(actor_factory, locator_factory=broken_locator, config=config)

        with pytest.raises(ValueError, match="no locator"):
            await registry.initialize_app("alpha")

        assert actor_factory.actors["alpha"].closed
        assert registry.sessions == {}


class TestSwitching:
    """Tests for switch_to and history."""

    @pytest.mark.asyncio
    async def test_switch_success_sets_current(self, registry: SessionRegistry) -> None:
        result = await registry.switch_to("alpha")

        assert result.success
        assert result.previous_app is None
        assert result.current_app == "alpha"
        assert registry.get_current_app() == "alpha"
        assert registry.current_session.app_id == "alpha"

    @pytest.mark.asyncio
    async def test_switch_failure_keeps_current(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        actor_factory.failing.add("beta")
        await registry.switch_to("alpha")

        result = await registry.switch_to("beta")

        assert not result.success
        assert "beta is unavailable" in result.error
        assert registry.get_current_app() == "alpha"

    @pytest.mark.asyncio
    async def test_switch_never_raises_on_factory_error(self) -> None:
        async def broken_factory(app_id: str, base_url: str | None) -> None:
            raise ConnectionError("browser gone")

        registry = SessionRegistry(broken_factory)
        result = await registry.switch_to("alpha")

        assert not result.success
        assert result.error == "browser gone"
        assert registry.get_current_app() is None

    @pytest.mark.asyncio
    async def test_history_and_metrics(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")
        await registry.switch_to("beta")
        await registry.switch_to("alpha")

        history = registry.get_switch_history()
        metrics = registry.get_metrics()

        assert len(history) == 3
        assert [h.current_app for h in history] == ["alpha", "beta", "alpha"]
        assert history[2].previous_app == "beta"
        assert metrics.total_switches == 3
        assert metrics.session_count == 2
        assert metrics.success_rate == 1.0

    @pytest.mark.asyncio
    async def test_metrics_success_rate_counts_failures(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        actor_factory.failing.add("beta")
        await registry.switch_to("alpha")
        await registry.switch_to("beta")

        assert registry.get_metrics().success_rate == 0.5

    def test_metrics_without_switches(self, registry: SessionRegistry) -> None:
        metrics = registry.get_metrics()
        assert metrics.total_switches == 0
        assert metrics.success_rate == 1.0
        assert metrics.average_switch_time_ms == 0.0

    @pytest.mark.asyncio
    async def test_history_limit_keeps_latest(
        self, actor_factory: FakeActorFactory
    ) -> None:
        registry = SessionRegistry(actor_factory, history_limit=2)
        for app_id in ("alpha", "beta", "gamma"):
            await registry.switch_to(app_id)

        history = registry.get_switch_history()
        assert [h.current_app for h in history] == ["beta", "gamma"]

    @pytest.mark.asyncio
    async def test_clear_switch_history(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")
        registry.clear_switch_history()
        assert registry.get_switch_history() == []

    def test_current_session_without_current_raises(self, registry: SessionRegistry) -> None:
        with pytest.raises(SessionNotFoundError):
            registry.current_session

    def test_require_session_unknown_app(self, registry: SessionRegistry) -> None:
        with pytest.raises(SessionNotFoundError) as exc_info:
            registry.require_session("nope")
        assert exc_info.value.context.app_id == "nope"


class TestExecuteInApp:
    """Tests for execute_in_app and execute_in_all_apps."""

    @pytest.mark.asyncio
    async def test_restores_previous_app(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")

        async def inside(session):
            await registry.switch_to("gamma")
            return session.app_id

        result = await registry.execute_in_app("beta", inside)

        assert result == "beta"
        assert registry.get_current_app() == "alpha"

    @pytest.mark.asyncio
    async def test_restores_previous_app_when_fn_raises(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")

        def explode(session):
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await registry.execute_in_app("beta", explode)

        assert registry.get_current_app() == "alpha"

    @pytest.mark.asyncio
    async def test_no_previous_app_restores_none(self, registry: SessionRegistry) -> None:
        result = await registry.execute_in_app("beta", lambda session: session.app_id)

        assert result == "beta"
        assert registry.get_current_app() is None
        assert registry.get_session("beta") is not None

    @pytest.mark.asyncio
    async def test_no_previous_app_restores_none_when_fn_raises(
        self, registry: SessionRegistry
    ) -> None:
        def explode(session):
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await registry.execute_in_app("beta", explode)

        assert registry.get_current_app() is None

    @pytest.mark.asyncio
    async def test_switch_failure_raises(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        actor_factory.failing.add("beta")
        await registry.switch_to("alpha")
        fn = AsyncMock()

        with pytest.raises(SwitchFailedError):
            await registry.execute_in_app("beta", fn)

        fn.assert_not_called()
        assert registry.get_current_app() == "alpha"

    @pytest.mark.asyncio
    async def test_execute_in_all_apps(self, registry: SessionRegistry) -> None:
        await registry.initialize_app("alpha")
        await registry.initialize_app("beta")

        results = await registry.execute_in_all_apps(
            lambda app_id, session: session.base_url
        )

        assert results == {"alpha": "http://alpha.test", "beta": "http://beta.test"}


class TestAuthentication:
    """Tests for authenticate."""

    @pytest.mark.asyncio
    async def test_authenticate_stores_token_and_user(
        self, registry: SessionRegistry, client_factory: FakeClientFactory
    ) -> None:
        session = await registry.authenticate("alpha", {"email": "qa@example.com"})

        assert session.authenticated
        assert registry.is_authenticated("alpha")
        assert registry.get_auth_token("alpha") == "token-alpha"
        assert registry.get_user("alpha") == {"email": "qa@example.com"}
        assert len(client_factory.clients["alpha"].logins) == 1

    @pytest.mark.asyncio
    async def test_authenticate_is_idempotent(
        self, registry: SessionRegistry, client_factory: FakeClientFactory
    ) -> None:
        await registry.authenticate("alpha", {"email": "qa@example.com"})
        await registry.authenticate("alpha", {"email": "qa@example.com"})

        assert len(client_factory.clients["alpha"].logins) == 1

    @pytest.mark.asyncio
    async def test_login_failure_wraps_cause(
        self, registry: SessionRegistry, client_factory: FakeClientFactory
    ) -> None:
        await registry.initialize_app("alpha")
        client_factory.clients["alpha"].error = PermissionError("bad password")

        with pytest.raises(AuthenticationError) as exc_info:
            await registry.authenticate("alpha", {"email": "qa@example.com"})

        assert isinstance(exc_info.value.cause, PermissionError)
        assert not exc_info.value.recoverable
        assert not registry.is_authenticated("alpha")

    @pytest.mark.asyncio
    async def test_switch_failure_raises_authentication_error(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        actor_factory.failing.add("alpha")

        with pytest.raises(AuthenticationError) as exc_info:
            await registry.authenticate("alpha", {})

        assert isinstance(exc_info.value.cause, SwitchFailedError)

    @pytest.mark.asyncio
    async def test_ui_login_runs_on_login_page(
        self, actor_factory: FakeActorFactory, client_factory: FakeClientFactory, config
    ) -> None:
        ui_login = AsyncMock()
        registry = SessionRegistry(actor_factory, client_factory, config=config, ui_login=ui_login)
        session = await registry.initialize_app("alpha")
        session.actor.url = "http://alpha.test/login"

        await registry.authenticate("alpha", {"email": "qa@example.com"})

        ui_login.assert_awaited_once()
        assert ui_login.await_args.args[0] is session

    @pytest.mark.asyncio
    async def test_ui_login_skipped_off_login_page(
        self, actor_factory: FakeActorFactory, client_factory: FakeClientFactory, config
    ) -> None:
        ui_login = AsyncMock()
        registry = SessionRegistry(actor_factory, client_factory, config=config, ui_login=ui_login)

        await registry.authenticate("alpha", {"email": "qa@example.com"})

        ui_login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_login_method_raises(
        self, actor_factory: FakeActorFactory, config
    ) -> None:
        registry = SessionRegistry(actor_factory, config=config)

        with pytest.raises(AuthenticationError, match="No login method"):
            await registry.authenticate("alpha", {"email": "qa@example.com"})

        assert not registry.is_authenticated("alpha")

    @pytest.mark.asyncio
    async def test_ui_login_alone_off_login_page_raises(
        self, actor_factory: FakeActorFactory, config
    ) -> None:
        ui_login = AsyncMock()
        registry = SessionRegistry(actor_factory, config=config, ui_login=ui_login)

        with pytest.raises(AuthenticationError):
            await registry.authenticate("alpha", {"email": "qa@example.com"})

        ui_login.assert_not_awaited()
        assert not registry.is_authenticated("alpha")

    @pytest.mark.asyncio
    async def test_ui_login_alone_on_login_page_authenticates(
        self, actor_factory: FakeActorFactory, config
    ) -> None:
        ui_login = AsyncMock()
        registry = SessionRegistry(actor_factory, config=config, ui_login=ui_login)
        session = await registry.initialize_app("alpha")
        session.actor.url = "http://alpha.test/login"

        await registry.authenticate("alpha", {"email": "qa@example.com"})

        ui_login.assert_awaited_once()
        assert registry.is_authenticated("alpha")
        assert registry.get_auth_token("alpha") is None

    def test_auth_accessors_for_unknown_app(self, registry: SessionRegistry) -> None:
        assert not registry.is_authenticated("nope")
        assert registry.get_auth_token("nope") is None
        assert registry.get_user("nope") is None


class TestNavigationAndPolling:
    """Tests for navigate_to and wait_for_condition_across_apps."""

    @pytest.mark.asyncio
    async def test_navigate_relative_path(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")
        await registry.navigate_to("/orders/1")
        assert registry.current_session.actor.url == "http://alpha.test/orders/1"

    @pytest.mark.asyncio
    async def test_navigate_absolute_url(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")
        await registry.navigate_to("https://elsewhere.test/page")
        assert registry.current_session.actor.url == "https://elsewhere.test/page"

    @pytest.mark.asyncio
    async def test_wait_for_condition_returns_matching_app(
        self, registry: SessionRegistry
    ) -> None:
        await registry.initialize_app("alpha")
        await registry.initialize_app("beta")

        found = await registry.wait_for_condition_across_apps(
            lambda app_id, session: app_id == "beta", timeout=1.0, interval=0.01
        )

        assert found == "beta"
        assert registry.get_current_app() == "beta"

    @pytest.mark.asyncio
    async def test_wait_for_condition_times_out(self, registry: SessionRegistry) -> None:
        await registry.initialize_app("alpha")

        found = await registry.wait_for_condition_across_apps(
            lambda app_id, session: False, timeout=0.05, interval=0.01
        )

        assert found is None

    @pytest.mark.asyncio
    async def test_wait_for_condition_restricted_apps(self, registry: SessionRegistry) -> None:
        await registry.initialize_app("alpha")
        await registry.initialize_app("beta")
        checked: list[str] = []

        def condition(app_id, session):
            checked.append(app_id)
            return False

        await registry.wait_for_condition_across_apps(
            condition, timeout=0.03, interval=0.01, apps=["beta", "missing"]
        )

        assert set(checked) == {"beta"}


class TestClosing:
    """Tests for close_app, close_all and the context manager."""

    @pytest.mark.asyncio
    async def test_close_current_app_promotes_remaining(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        await registry.switch_to("alpha")
        await registry.switch_to("beta")

        await registry.close_app("beta")

        assert actor_factory.actors["beta"].closed
        assert registry.get_session("beta") is None
        assert registry.get_current_app() == "alpha"

    @pytest.mark.asyncio
    async def test_close_current_app_skips_unavailable_session(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        await registry.switch_to("alpha")
        await registry.switch_to("beta")
        await registry.switch_to("gamma")
        actor_factory.actors["alpha"].fail_on_front = True

        await registry.close_app("gamma")

        assert registry.get_current_app() == "beta"
        assert registry.get_session("alpha") is not None

    @pytest.mark.asyncio
    async def test_close_current_app_with_no_available_session(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        await registry.switch_to("alpha")
        await registry.switch_to("beta")
        actor_factory.actors["alpha"].fail_on_front = True

        await registry.close_app("beta")

        assert registry.get_current_app() is None
        assert not registry.get_switch_history()[-1].success

    @pytest.mark.asyncio
    async def test_close_last_app_clears_current(self, registry: SessionRegistry) -> None:
        await registry.switch_to("alpha")
        await registry.close_app("alpha")
        assert registry.get_current_app() is None

    @pytest.mark.asyncio
    async def test_close_unknown_app_is_noop(self, registry: SessionRegistry) -> None:
        await registry.close_app("nope")

    @pytest.mark.asyncio
    async def test_close_all(
        self,
        registry: SessionRegistry,
        actor_factory: FakeActorFactory,
        client_factory: FakeClientFactory,
    ) -> None:
        await registry.switch_to("alpha")
        await registry.switch_to("beta")

        await registry.close_all()

        assert all(actor.closed for actor in actor_factory.actors.values())
        assert all(client.disconnected for client in client_factory.clients.values())
        assert registry.sessions == {}
        assert registry.get_current_app() is None
        assert registry.get_switch_history() == []

    @pytest.mark.asyncio
    async def test_close_errors_are_logged_not_raised(
        self, registry: SessionRegistry, actor_factory: FakeActorFactory
    ) -> None:
        await registry.switch_to("alpha")
        actor_factory.actors["alpha"].close = AsyncMock(side_effect=RuntimeError("crashed"))

        await registry.close_all()

        assert registry.sessions == {}

    @pytest.mark.asyncio
    async def test_async_context_manager(
        self, actor_factory: FakeActorFactory, config
    ) -> None:
        async with SessionRegistry(actor_factory, config=config) as registry:
            await registry.switch_to("alpha")

        assert actor_factory.actors["alpha"].closed
