"""Tests for TestDataManager and TestDataHooks."""

from __future__ import annotations

from typing import Any

import pytest

from switchyard.data import (
    IsolationContextFactory,
    SeedProfile,
    TestDataConfig,
    TestDataHooks,
    TestDataManager,
    TestIdentity,
)
from switchyard.data.manager import GLOBAL_NAMESPACE
from switchyard.errors import WorkflowStateError

IDENTITY = TestIdentity(file="tests/test_checkout.py", title="checkout")


class InMemoryBackend:
    """DataBackend keeping everything in dicts."""

    def __init__(self, seeded: bool = False) -> None:
        self.seeded: list[str] = ["existing"] if seeded else []
        self.deleted: list[tuple[str, Any]] = []
        self.clean_all_calls = 0
        self.disconnected = False

    async def seed(self, profile: SeedProfile) -> None:
        self.seeded.append(profile.name)

    async def verify(self) -> bool:
        return bool(self.seeded)

    async def delete(self, entity_type: str, entity_id: Any) -> None:
        self.deleted.append((entity_type, entity_id))

    async def clean_all(self) -> None:
        self.clean_all_calls += 1

    async def disconnect(self) -> None:
        self.disconnected = True


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def manager(backend: InMemoryBackend) -> TestDataManager:
    return TestDataManager(backend, IsolationContextFactory(run_id="run-1"))


class TestDataManagerLifecycle:
    """Tests for the per-test lifecycle."""

    @pytest.mark.asyncio
    async def test_initialize_creates_context(self, manager: TestDataManager) -> None:
        ctx = await manager.initialize(IDENTITY)

        assert ctx is manager.context
        assert manager.namespace == ctx.namespace

    @pytest.mark.asyncio
    async def test_initialize_seeds_configured_profile(self, backend: InMemoryBackend) -> None:
        manager = TestDataManager(backend, config=TestDataConfig(seed_profile=SeedProfile.standard()))

        await manager.initialize(IDENTITY)

        assert backend.seeded == ["standard"]

    @pytest.mark.asyncio
    async def test_isolation_disabled(self, backend: InMemoryBackend) -> None:
        manager = TestDataManager(backend, config=TestDataConfig(isolation_enabled=False))

        assert await manager.initialize(IDENTITY) is None
        assert manager.namespace == GLOBAL_NAMESPACE
        with pytest.raises(WorkflowStateError):
            manager.isolated({"email": "qa@example.com"})

    @pytest.mark.asyncio
    async def test_isolated_data(self, manager: TestDataManager) -> None:
        ctx = await manager.initialize(IDENTITY)

        data = manager.isolated({"email": "qa@example.com"}).data

        assert data["email"] == f"{ctx.namespace}_qa@example.com"
        assert manager.decorator().name("Shop") == f"[{ctx.namespace}] Shop"

    @pytest.mark.asyncio
    async def test_track_and_cleanup(
        self, manager: TestDataManager, backend: InMemoryBackend
    ) -> None:
        ctx = await manager.initialize(IDENTITY)
        manager.track("users", "u1")
        manager.track("orders", ["o1", "o2"])

        result = await manager.cleanup()

        assert result is not None and result.deleted_count == 3
        assert backend.deleted == [("orders", "o2"), ("orders", "o1"), ("users", "u1")]
        assert manager.context is None
        assert manager.isolation.get_context(ctx.test_id) is None

    @pytest.mark.asyncio
    async def test_auto_cleanup_disabled(self, backend: InMemoryBackend) -> None:
        manager = TestDataManager(backend, config=TestDataConfig(auto_cleanup=False))
        await manager.initialize(IDENTITY)
        manager.track("users", "u1")

        assert await manager.clean() is None
        assert backend.deleted == []

    @pytest.mark.asyncio
    async def test_seed_defaults_to_minimal(
        self, manager: TestDataManager, backend: InMemoryBackend
    ) -> None:
        await manager.seed()
        assert backend.seeded == ["minimal"]
        assert await manager.verify_seeded()


class TestDataHooksLifecycle:
    """Tests for suite-level hooks."""

    @pytest.mark.asyncio
    async def test_before_all_seeds_when_missing(self, manager: TestDataManager) -> None:
        hooks = TestDataHooks(manager)
        await hooks.before_all()
        assert manager.backend.seeded == ["standard"]

    @pytest.mark.asyncio
    async def test_before_all_keeps_existing_seed(self) -> None:
        backend = InMemoryBackend(seeded=True)
        await TestDataHooks(TestDataManager(backend)).before_all()
        assert backend.seeded == ["existing"]

    @pytest.mark.asyncio
    async def test_each_hooks(self, manager: TestDataManager, backend: InMemoryBackend) -> None:
        hooks = TestDataHooks(manager)

        returned = await hooks.before_each(IDENTITY)
        returned.track("users", "u1")
        await hooks.after_each()

        assert returned is manager
        assert backend.deleted == [("users", "u1")]

    @pytest.mark.asyncio
    async def test_after_all_cleans_everything(
        self, manager: TestDataManager, backend: InMemoryBackend
    ) -> None:
        manager.track("users", "leftover")

        await TestDataHooks(manager).after_all()

        assert backend.deleted == [("users", "leftover")]
        assert backend.clean_all_calls == 1
        assert backend.disconnected

    @pytest.mark.asyncio
    async def test_after_all_preserving_seeded(
        self, manager: TestDataManager, backend: InMemoryBackend
    ) -> None:
        await TestDataHooks(manager).after_all(preserve_seeded=True)

        assert backend.clean_all_calls == 0
        assert backend.disconnected
