"""Tracking of entities created under an isolation namespace.

Entities are registered as they are created and purged once the test
that owns the namespace is done:

    >>> registry = CleanupRegistry()
    >>> registry.register(ctx.namespace, "users", user_id)
    >>> registry.register(ctx.namespace, "orders", order_id)
    >>> result = await registry.purge_namespace(ctx.namespace, backend.delete)
    >>> result.deleted_count  # orders first, then users
    2
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from switchyard.errors import CleanupError, ErrorContext

logger = logging.getLogger(__name__)

EntityId = str | int
Deleter = Callable[[str, EntityId], "Awaitable[Any] | Any"]


@dataclass(frozen=True)
class TrackedEntity:
    """An entity registered for cleanup.

    Attributes:
        namespace: Isolation namespace the entity was created under.
        entity_type: Kind of entity (e.g. 'users', 'orders').
        entity_id: Identifier of the entity.
        registered_at: When the entity was registered.
    """

    namespace: str
    entity_type: str
    entity_id: EntityId
    registered_at: datetime = field(default_factory=datetime.now, compare=False)


@dataclass
class CleanupResult:
    """Result of purging one namespace.

    Attributes:
        namespace: The purged namespace.
        success: Whether every entity was deleted.
        deleted_count: Number of entities deleted.
        failed_count: Number of entities whose deletion failed.
        deleted_entities: Entities that were deleted, in deletion order.
        failed_entities: Entities that failed, each with the CleanupError
            wrapping the deleter's exception.
        duration_ms: Total duration of the purge.
    """

    namespace: str
    success: bool
    deleted_count: int = 0
    failed_count: int = 0
    deleted_entities: list[TrackedEntity] = field(default_factory=list)
    failed_entities: list[tuple[TrackedEntity, CleanupError]] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total_count(self) -> int:
        """Total number of entities processed."""
        return self.deleted_count + self.failed_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "success": self.success,
            "deleted_count": self.deleted_count,
            "failed_count": self.failed_count,
            "failed": [
                {
                    "entity_type": e.entity_type,
                    "entity_id": e.entity_id,
                    "error": str(error.cause or error.message),
                }
                for e, error in self.failed_entities
            ],
            "duration_ms": self.duration_ms,
        }

    def raise_for_failures(self) -> None:
        """Raise a CleanupError if any entity could not be deleted.

        The error is chained to the first failure's original exception.
        """
        if not self.failed_entities:
            return
        first = self.failed_entities[0][1]
        raise CleanupError(
            f"Failed to delete {self.failed_count} entities in {self.namespace}",
            context=ErrorContext(extra={"namespace": self.namespace}),
            cause=first.cause,
            failed=[f"{e.entity_type}/{e.entity_id}" for e, _ in self.failed_entities],
        ) from first


class CleanupRegistry:
    """Namespace -> entity type -> ids, in registration order.

    Registration is idempotent. Not safe for concurrent use; give each
    flow its own registry.
    """

    def __init__(self) -> None:
        self._entities: dict[str, list[TrackedEntity]] = {}

    def register(self, namespace: str, entity_type: str, entity_id: EntityId) -> bool:
        """Track an entity. Returns False if it was already tracked."""
        tracked = self._entities.setdefault(namespace, [])
        entity = TrackedEntity(namespace, entity_type, entity_id)
        if entity in tracked:
            return False
        tracked.append(entity)
        logger.debug(f"Registered {entity_type}/{entity_id} for cleanup in {namespace}")
        return True

    def get_entities(self, namespace: str, entity_type: str) -> list[EntityId]:
        return [
            e.entity_id
            for e in self._entities.get(namespace, [])
            if e.entity_type == entity_type
        ]

    def get_all_in_namespace(self, namespace: str) -> dict[str, list[EntityId]]:
        grouped: dict[str, list[EntityId]] = {}
        for entity in self._entities.get(namespace, []):
            grouped.setdefault(entity.entity_type, []).append(entity.entity_id)
        return grouped

    def namespaces(self) -> list[str]:
        return [ns for ns, entities in self._entities.items() if entities]

    def clear_namespace(self, namespace: str) -> None:
        self._entities.pop(namespace, None)

    def clear_all(self) -> None:
        self._entities.clear()

    async def purge_namespace(self, namespace: str, deleter: Deleter) -> CleanupResult:
        """Delete every entity of a namespace, newest first.

        Deletion is best-effort: a failing delete is recorded in the
        result and the entity stays tracked; the remaining entities are
        still processed.

        Args:
            namespace: Namespace to purge.
            deleter: Called as ``deleter(entity_type, entity_id)``; may be
                sync or async.
        """
        start = time.perf_counter()
        result = CleanupResult(namespace=namespace, success=True)
        remaining: list[TrackedEntity] = []

        for entity in reversed(self._entities.get(namespace, [])):
            try:
                value = deleter(entity.entity_type, entity.entity_id)
                if inspect.isawaitable(value):
                    await value
                result.deleted_entities.append(entity)
                result.deleted_count += 1
            except Exception as e:
                error = CleanupError(
                    f"Failed to delete {entity.entity_type}/{entity.entity_id} in {namespace}",
                    context=ErrorContext(
                        extra={
                            "namespace": namespace,
                            "entity_type": entity.entity_type,
                            "entity_id": entity.entity_id,
                        }
                    ),
                    cause=e,
                )
                result.failed_entities.append((entity, error))
                result.failed_count += 1
                result.success = False
                remaining.append(entity)
                logger.warning(
                    f"Failed to delete {entity.entity_type}/{entity.entity_id} "
                    f"in {namespace}: {e}"
                )

        if remaining:
            self._entities[namespace] = list(reversed(remaining))
        else:
            self._entities.pop(namespace, None)

        result.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Purged namespace {namespace}: {result.deleted_count} deleted, "
            f"{result.failed_count} failed"
        )
        return result
