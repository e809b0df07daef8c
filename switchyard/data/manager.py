"""Test data lifecycle: seeding, isolation and cleanup behind one facade.

A TestDataManager owns the isolation context of the running test and the
entities it created. The storage side is an injected DataBackend, so the
same lifecycle works against a database, an HTTP API or an in-memory
fake.

Example:
    >>> hooks = TestDataHooks(TestDataManager(backend))
    >>> await hooks.before_all()
    >>> manager = await hooks.before_each(TestIdentity(file=__file__, title="checkout"))
    >>> user = manager.isolated({"email": "qa@example.com"}).data
    >>> manager.track("users", await backend.create("users", user))
    >>> await hooks.after_each()   # deletes the tracked user
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from switchyard.data.cleanup import CleanupRegistry, CleanupResult, EntityId
from switchyard.data.isolation import (
    IsolatedData,
    IsolationContext,
    IsolationContextFactory,
    IsolationDecorator,
    TestIdentity,
)
from switchyard.errors import WorkflowStateError

logger = logging.getLogger(__name__)

T = TypeVar("T")

GLOBAL_NAMESPACE = "global"


@dataclass(frozen=True)
class SeedProfile:
    """How much baseline data to seed, per entity type."""

    name: str
    counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def minimal(cls) -> SeedProfile:
        return cls("minimal", {"users": 1})

    @classmethod
    def standard(cls) -> SeedProfile:
        return cls("standard", {"users": 3, "projects": 2})


class DataBackend(Protocol):
    """Storage the manager seeds into and deletes from."""

    async def seed(self, profile: SeedProfile) -> None: ...

    async def verify(self) -> bool: ...

    async def delete(self, entity_type: str, entity_id: EntityId) -> None: ...

    async def clean_all(self) -> None: ...

    async def disconnect(self) -> None: ...


@dataclass
class TestDataConfig:
    """Behaviour switches for TestDataManager.

    Attributes:
        auto_cleanup: Delete tracked entities in ``clean()``.
        isolation_enabled: Create an isolation context in ``initialize()``.
        seed_profile: Seed this profile in ``initialize()``.
    """

    __test__ = False

    auto_cleanup: bool = True
    isolation_enabled: bool = True
    seed_profile: SeedProfile | None = None


class TestDataManager:
    """Coordinates seeding, isolation and cleanup for one test at a time."""

    __test__ = False

    def __init__(
        self,
        backend: DataBackend,
        isolation: IsolationContextFactory | None = None,
        cleanup: CleanupRegistry | None = None,
        config: TestDataConfig | None = None,
    ) -> None:
        self.backend = backend
        self.isolation = isolation or IsolationContextFactory()
        self.cleanup_registry = cleanup or CleanupRegistry()
        self.config = config or TestDataConfig()
        self._context: IsolationContext | None = None

    @property
    def context(self) -> IsolationContext | None:
        return self._context

    @property
    def namespace(self) -> str:
        """Namespace entities are tracked under."""
        return self._context.namespace if self._context else GLOBAL_NAMESPACE

    async def initialize(self, identity: TestIdentity) -> IsolationContext | None:
        """Prepare for one test: isolation context and optional seeding."""
        if self.config.isolation_enabled:
            self._context = self.isolation.create_context(identity)
        if self.config.seed_profile is not None:
            await self.seed(self.config.seed_profile)
        return self._context

    def isolated(self, data: T) -> IsolatedData[T]:
        """Decorate data with the current test's namespace.

        Raises:
            WorkflowStateError: If no isolation context is active.
        """
        return self.isolation.isolate(data, self._require_context())

    def decorator(self) -> IsolationDecorator:
        return IsolationDecorator(self.isolation, self._require_context())

    def track(self, entity_type: str, ids: EntityId | Iterable[EntityId]) -> None:
        """Register created entities for cleanup under the current namespace."""
        if isinstance(ids, (str, int)):
            ids = [ids]
        for entity_id in ids:
            self.cleanup_registry.register(self.namespace, entity_type, entity_id)

    async def seed(self, profile: SeedProfile | None = None) -> None:
        profile = profile or self.config.seed_profile or SeedProfile.minimal()
        logger.info(f"Seeding test data: {profile.name}")
        await self.backend.seed(profile)

    async def verify_seeded(self) -> bool:
        return await self.backend.verify()

    async def clean(self) -> CleanupResult | None:
        """Delete what the current test tracked, if auto cleanup is on."""
        if not self.config.auto_cleanup:
            return None
        return await self.cleanup_registry.purge_namespace(self.namespace, self.backend.delete)

    async def clean_all(self) -> list[CleanupResult]:
        """Purge every tracked namespace, then all remaining test data."""
        results = [
            await self.cleanup_registry.purge_namespace(namespace, self.backend.delete)
            for namespace in self.cleanup_registry.namespaces()
        ]
        await self.backend.clean_all()
        return results

    async def cleanup(self) -> CleanupResult | None:
        """End of test: clean tracked data and drop the isolation context."""
        result = await self.clean()
        if self._context is not None:
            self.isolation.cleanup(self._context.run_id)
            self._context = None
        return result

    async def disconnect(self) -> None:
        await self.backend.disconnect()

    def _require_context(self) -> IsolationContext:
        if self._context is None:
            raise WorkflowStateError(
                "No isolation context; call initialize() with isolation enabled first"
            )
        return self._context


class TestDataHooks:
    """Suite and test lifecycle hooks around a TestDataManager."""

    __test__ = False

    def __init__(self, manager: TestDataManager) -> None:
        self.manager = manager

    async def before_all(self) -> None:
        if not await self.manager.verify_seeded():
            logger.info("Seeded data missing; seeding standard profile")
            await self.manager.seed(SeedProfile.standard())

    async def before_each(self, identity: TestIdentity) -> TestDataManager:
        await self.manager.initialize(identity)
        return self.manager

    async def after_each(self) -> CleanupResult | None:
        return await self.manager.cleanup()

    async def after_all(self, preserve_seeded: bool = False) -> None:
        if not preserve_seeded:
            await self.manager.clean_all()
        await self.manager.disconnect()
