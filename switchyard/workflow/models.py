"""Workflow definition and result models.

A Workflow is an ordered list of WorkflowSteps. Each step names the
application it runs in and an async callable receiving the
WorkflowContext. Definitions are validated when constructed and are
never mutated while a run is in progress.

Example:
    >>> workflow = Workflow(
    ...     name="order_fulfilment",
    ...     steps=[
    ...         WorkflowStep(name="place_order", target_application="shop",
    ...                      execute=place_order, store_as="order"),
    ...         WorkflowStep(name="approve_order", target_application="admin",
    ...                      execute=approve_order, recoverable=True),
    ...         WorkflowStep(name="check_status", target_application="shop",
    ...                      execute=check_status, timeout=10.0),
    ...     ],
    ... )
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from switchyard.errors import (
    ErrorContext,
    RetryConfig,
    StepExecutionError,
    WorkflowDefinitionError,
)
from switchyard.workflow.context import WorkflowState

if TYPE_CHECKING:
    from switchyard.config import SwitchyardConfig


class WorkflowStatus(Enum):
    """Lifecycle of a workflow run.

    CREATED -> RUNNING -> COMPLETED | FAILED | TIMED_OUT
    """

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.TIMED_OUT)


class StepStatus(Enum):
    """Lifecycle of a single step within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


StepCallable = Callable[..., Any]


class WorkflowStep(BaseModel):
    """A single step of a workflow.

    Attributes:
        name: Unique identifier for this step within its workflow.
        execute: Callable receiving the WorkflowContext. May be async.
        target_application: Application to bring forward before running.
            None runs in whichever application is current.
        store_as: Key under which the step's return value is stored.
        timeout: Step timeout in seconds. None uses the workflow default.
        recoverable: Whether a configured retry policy may re-run the step,
            and whether a run that stopped on it can be resumed.
        description: Human-readable description.
        check: Optional pre-run validator receiving the WorkflowContext.
            Returns a list of problems (empty when the step can run). May
            be async.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        frozen=True,
    )

    name: str = Field(..., min_length=1, max_length=100)
    execute: StepCallable
    target_application: str | None = None
    store_as: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    recoverable: bool = False
    description: str = ""
    check: StepCallable | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Step name cannot be empty or whitespace")
        return v.strip()

    @field_validator("execute", mode="before")
    @classmethod
    def validate_execute(cls, v: Any) -> StepCallable:
        if not callable(v):
            raise ValueError("execute must be callable")
        return v

    @field_validator("check", mode="before")
    @classmethod
    def validate_check(cls, v: Any) -> StepCallable | None:
        if v is not None and not callable(v):
            raise ValueError("check must be callable")
        return v


class Workflow(BaseModel):
    """An ordered, named sequence of steps."""

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        frozen=True,
    )

    name: str = Field(..., min_length=1, max_length=200)
    steps: list[WorkflowStep] = Field(default_factory=list)
    description: str = ""
    teardown: StepCallable | None = None

    @model_validator(mode="after")
    def validate_steps(self) -> Workflow:
        context = ErrorContext(workflow_name=self.name)
        if not self.steps:
            raise WorkflowDefinitionError(
                f"Workflow '{self.name}' has no steps", context=context
            )

        seen_names: set[str] = set()
        seen_keys: set[str] = set()
        for step in self.steps:
            if step.name in seen_names:
                raise WorkflowDefinitionError(
                    f"Duplicate step name '{step.name}' in workflow '{self.name}'",
                    context=context,
                )
            seen_names.add(step.name)

            if step.store_as is not None:
                if step.store_as in seen_keys:
                    raise WorkflowDefinitionError(
                        f"Result key '{step.store_as}' is stored by more than one step "
                        f"in workflow '{self.name}'",
                        context=context,
                    )
                seen_keys.add(step.store_as)
        return self

    @property
    def applications(self) -> list[str]:
        """Applications targeted by the steps, in first-use order."""
        apps: list[str] = []
        for step in self.steps:
            if step.target_application and step.target_application not in apps:
                apps.append(step.target_application)
        return apps


@dataclass
class WorkflowValidation:
    """Problems found by WorkflowEngine.validate(); empty when valid."""

    workflow_name: str
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class WorkflowOptions:
    """Execution options for a workflow run.

    Attributes:
        continue_on_error: Record step failures and keep going.
        step_timeout: Default per-step timeout in seconds.
        workflow_timeout: Budget in seconds after which no new step starts.
        capture_screenshots: Capture screenshots at step boundaries.
        screenshot_dir: Directory screenshots are written to.
        retry: Retry policy for recoverable steps. None disables retries.
        raise_on_failure: Raise from run() instead of only reporting.
        validate_before_run: Run WorkflowEngine.validate() first and fail
            the run without executing any step when it finds problems.
        initialize_applications: Open a session for every application
            the workflow uses before the first step runs.
    """

    continue_on_error: bool = False
    step_timeout: float = 30.0
    workflow_timeout: float = 300.0
    capture_screenshots: bool = False
    screenshot_dir: str = "screenshots"
    retry: RetryConfig | None = None
    raise_on_failure: bool = False
    validate_before_run: bool = False
    initialize_applications: bool = False

    @classmethod
    def from_config(cls, config: SwitchyardConfig, **overrides: Any) -> WorkflowOptions:
        """Build options from configuration, with keyword overrides."""
        defaults = config.workflow
        values: dict[str, Any] = {
            "continue_on_error": defaults.continue_on_error,
            "step_timeout": defaults.step_timeout,
            "workflow_timeout": defaults.workflow_timeout,
            "capture_screenshots": defaults.capture_screenshots,
            "screenshot_dir": defaults.screenshot_dir,
            "validate_before_run": defaults.validate_before_run,
            "initialize_applications": defaults.initialize_applications,
            "retry": config.retry_config,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class StepRecord:
    """What happened to one step during a run."""

    step_name: str
    app_id: str | None = None
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: float = 0.0
    error: str | None = None
    screenshots: list[str] = field(default_factory=list)

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "app_id": self.app_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "screenshots": list(self.screenshots),
        }


@dataclass(frozen=True)
class StatusTransition:
    """A recorded status change of the workflow or of one of its steps."""

    subject: str
    from_status: str
    to_status: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class WorkflowMetrics:
    """Aggregate numbers for a finished run.

    application_switches counts consecutive executed steps that ran in
    different applications.
    """

    total_duration_ms: float
    step_durations_ms: dict[str, float]
    executed_steps: int
    completed_steps: int
    error_count: int
    retry_count: int
    application_switches: int
    success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_duration_ms": self.total_duration_ms,
            "step_durations_ms": dict(self.step_durations_ms),
            "executed_steps": self.executed_steps,
            "completed_steps": self.completed_steps,
            "error_count": self.error_count,
            "retry_count": self.retry_count,
            "application_switches": self.application_switches,
            "success_rate": self.success_rate,
        }


@dataclass
class WorkflowResult:
    """Outcome of a workflow run."""

    workflow_name: str
    status: WorkflowStatus = WorkflowStatus.CREATED
    state: WorkflowState = field(default_factory=WorkflowState)
    records: list[StepRecord] = field(default_factory=list)
    transitions: list[StatusTransition] = field(default_factory=list)
    error: BaseException | None = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        """True when every step ran and none failed."""
        return self.status == WorkflowStatus.COMPLETED and not self.state.errors

    @property
    def errors(self) -> list[Any]:
        return list(self.state.errors)

    @property
    def results(self) -> dict[str, Any]:
        return self.state.results.copy()

    def record_for(self, step_name: str) -> StepRecord | None:
        for record in self.records:
            if record.step_name == step_name:
                return record
        return None

    def transition(self, to_status: WorkflowStatus) -> None:
        self.transitions.append(
            StatusTransition(
                subject=self.workflow_name,
                from_status=self.status.value,
                to_status=to_status.value,
            )
        )
        self.status = to_status

    def step_transition(self, record: StepRecord, to_status: StepStatus) -> None:
        self.transitions.append(
            StatusTransition(
                subject=record.step_name,
                from_status=record.status.value,
                to_status=to_status.value,
            )
        )
        record.status = to_status

    @property
    def metrics(self) -> WorkflowMetrics:
        executed = [
            r for r in self.records if r.status in (StepStatus.COMPLETED, StepStatus.FAILED)
        ]
        completed = [r for r in executed if r.status == StepStatus.COMPLETED]

        switches = 0
        previous_app: str | None = None
        for record in executed:
            if previous_app is not None and record.app_id != previous_app:
                switches += 1
            previous_app = record.app_id

        return WorkflowMetrics(
            total_duration_ms=self.duration_ms,
            step_durations_ms={r.step_name: r.duration_ms for r in executed},
            executed_steps=len(executed),
            completed_steps=len(completed),
            error_count=len(self.state.errors),
            retry_count=sum(r.retries for r in self.records),
            application_switches=switches,
            success_rate=len(completed) / len(executed) if executed else 0.0,
        )

    def can_recover(self) -> bool:
        """Whether the run can be resumed with WorkflowEngine.resume().

        A run still in progress can. A finished run can only when it
        stopped early (failed or timed out) and one of its errors is
        recoverable.
        """
        if self.status == WorkflowStatus.RUNNING:
            return True
        if self.status not in (WorkflowStatus.FAILED, WorkflowStatus.TIMED_OUT):
            return False
        if any(e.recoverable for e in self.state.errors):
            return True
        return bool(getattr(self.error, "recoverable", False))

    def recovery_point(self) -> int:
        """Index of the step a resumed run starts from, or -1.

        That is the step after the last completed one, or 0 when none
        completed.
        """
        if not self.can_recover():
            return -1
        for index in range(len(self.records) - 1, -1, -1):
            if self.records[index].status == StepStatus.COMPLETED:
                return index + 1
        return 0

    def raise_for_status(self) -> None:
        """Raise if the run did not succeed.

        A failed run re-raises the error of the step that stopped it. A
        timed-out run raises WorkflowTimeoutError. A run that completed
        with recorded step errors raises StepExecutionError.
        """
        if self.status in (WorkflowStatus.FAILED, WorkflowStatus.TIMED_OUT) and self.error:
            raise self.error
        if self.state.errors:
            first = self.state.errors[0]
            names = ", ".join(e.step_name for e in self.state.errors)
            raise StepExecutionError(
                f"{len(self.state.errors)} step(s) failed in workflow "
                f"'{self.workflow_name}': {names}",
                context=ErrorContext(workflow_name=self.workflow_name, step_name=first.step_name),
                cause=first.error,
            ) from first.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_name": self.workflow_name,
            "status": self.status.value,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "error": str(self.error) if self.error else None,
            "results": sorted(self.state.results),
            "errors": [e.to_dict() for e in self.state.errors],
            "steps": [r.to_dict() for r in self.records],
            "metrics": self.metrics.to_dict(),
        }


__all__ = [
    "StatusTransition",
    "StepCallable",
    "StepRecord",
    "StepStatus",
    "Workflow",
    "WorkflowMetrics",
    "WorkflowOptions",
    "WorkflowResult",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowValidation",
]
