"""Execution context for sharing state between workflow steps.

WorkflowState can be checkpointed by name and restored later:

    >>> state.create_checkpoint("after_order")
    >>> restored = state.restore_checkpoint("after_order")
    >>> restored.results == state.results
    True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar, overload

from switchyard.errors import ErrorContext, WorkflowStateError

if TYPE_CHECKING:
    from switchyard.sessions import ApplicationSession, SessionRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class StepError:
    """An error raised by a step, tagged with where it happened."""

    step_name: str
    app_id: str | None
    error: BaseException
    recoverable: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "app_id": self.app_id,
            "error_type": type(self.error).__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Checkpoint:
    """A named copy of a WorkflowState taken during a run.

    The result mapping and error list are copied; the stored values
    themselves are shared with the state they came from.
    """

    name: str
    results: dict[str, Any]
    stored_by: dict[str, str | None]
    errors: tuple[StepError, ...]
    started_at: datetime
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class WorkflowState:
    """Results and errors accumulated during one run.

    Only grows: results are written once and errors are appended.
    ``stored_by`` maps each result key to the step that stored it.
    """

    results: dict[str, Any] = field(default_factory=dict)
    errors: list[StepError] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    stored_by: dict[str, str | None] = field(default_factory=dict)
    checkpoints: dict[str, Checkpoint] = field(default_factory=dict)

    def record_error(self, error: StepError) -> None:
        self.errors.append(error)

    def create_checkpoint(self, name: str) -> Checkpoint:
        """Save the current results and errors under ``name``.

        A later checkpoint with the same name replaces the earlier one.
        """
        checkpoint = Checkpoint(
            name=name,
            results=self.results.copy(),
            stored_by=self.stored_by.copy(),
            errors=tuple(self.errors),
            started_at=self.started_at,
        )
        self.checkpoints[name] = checkpoint
        logger.debug(f"Created checkpoint {name} ({len(checkpoint.results)} results)")
        return checkpoint

    def restore_checkpoint(self, name: str) -> WorkflowState | None:
        """A new state holding the results and errors saved under ``name``.

        Returns None when no such checkpoint exists. The checkpoints
        themselves are carried over to the new state.
        """
        checkpoint = self.checkpoints.get(name)
        if checkpoint is None:
            return None
        return WorkflowState(
            results=checkpoint.results.copy(),
            errors=list(checkpoint.errors),
            started_at=checkpoint.started_at,
            stored_by=checkpoint.stored_by.copy(),
            checkpoints=self.checkpoints.copy(),
        )

    def list_checkpoints(self) -> list[str]:
        return list(self.checkpoints)

    def snapshot(self) -> dict[str, Any]:
        return {
            "results": self.results.copy(),
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat(),
            "checkpoints": self.list_checkpoints(),
        }


class WorkflowContext:
    """What a step sees while it runs.

    Gives access to the session registry, to results stored by earlier
    steps, and to the session of the application the step runs in.

    Example:
        >>> async def create_order(ctx: WorkflowContext) -> dict:
        ...     user = ctx.get_result("user", dict)
        ...     response = await ctx.session.client.post("/orders", json={"user": user["id"]})
        ...     return response.json()
    """

    def __init__(
        self,
        registry: SessionRegistry,
        state: WorkflowState | None = None,
        workflow_name: str = "",
    ) -> None:
        self.registry = registry
        self.state = state or WorkflowState()
        self.workflow_name = workflow_name
        self.step_name: str | None = None

    @property
    def session(self) -> ApplicationSession:
        """Session of the application that is currently in the foreground."""
        return self.registry.current_session

    @property
    def current_app(self) -> str | None:
        return self.registry.get_current_app()

    @property
    def results(self) -> dict[str, Any]:
        return self.state.results.copy()

    def store(self, key: str, value: Any) -> None:
        """Store a result. A key can only be written once per run.

        Raises:
            WorkflowStateError: If ``key`` already holds a result.
        """
        if key in self.state.results:
            raise WorkflowStateError(
                f"Result '{key}' is already stored and cannot be overwritten",
                context=ErrorContext(
                    workflow_name=self.workflow_name or None,
                    step_name=self.step_name,
                ),
            )
        self.state.results[key] = value
        self.state.stored_by[key] = self.step_name

    def checkpoint(self, name: str) -> Checkpoint:
        """Checkpoint the run's state under ``name``."""
        return self.state.create_checkpoint(name)

    def has_result(self, key: str) -> bool:
        return key in self.state.results

    @overload
    def get_result(self, key: str) -> Any: ...

    @overload
    def get_result(self, key: str, expected_type: type[T]) -> T: ...

    def get_result(self, key: str, expected_type: type[Any] | None = None) -> Any:
        """Read a stored result, checking its type when one is given.

        Raises:
            KeyError: If nothing was stored under ``key``.
            TypeError: If the stored value is not an ``expected_type``.
        """
        value = self.state.results.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(f"Required result not found: {key}")
        if expected_type is not None and not isinstance(value, expected_type):
            raise TypeError(
                f"Result '{key}' is {type(value).__name__}, expected {expected_type.__name__}"
            )
        return value

    def get(self, key: str, default: Any = None) -> Any:
        return self.state.results.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.state.results

    def __getitem__(self, key: str) -> Any:
        return self.get_result(key)
