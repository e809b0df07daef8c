"""Custom exception hierarchy for Switchyard.

Switchyard errors carry:
- error_code: A unique ErrorCode enum for categorization
- context: ErrorContext with workflow/step/application details
- recoverable: Whether a retry policy may attempt the operation again
- suggestions: List of actionable steps to resolve the issue

The fatal/recoverable classification lives on the error type itself so
that retry decisions never depend on message text.

Example:
    try:
        await registry.authenticate("admin", credentials)
    except AuthenticationError as e:
        print(f"Error: {e}")
        print(f"Suggestions: {e.suggestions}")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Standardized error codes for Switchyard.

    Error codes are organized by category:
    - E1xx: Session errors
    - E2xx: Validation/configuration errors
    - E3xx: Data errors (transactions, cleanup, isolation)
    - E4xx: Workflow execution errors
    - E5xx: Resilience errors
    - E6xx: Capture errors
    - E9xx: Unknown/internal errors
    """

    # Session errors (E1xx)
    SWITCH_FAILED = "E101"
    SESSION_NOT_FOUND = "E102"
    AUTHENTICATION_FAILED = "E103"
    SESSION_FAILED = "E104"

    # Validation errors (E2xx)
    INVALID_CONFIG = "E201"
    INVALID_WORKFLOW = "E202"
    STATE_CONFLICT = "E203"

    # Data errors (E3xx)
    TRANSACTION_FAILED = "E301"
    ROLLBACK_FAILED = "E302"
    CLEANUP_FAILED = "E303"

    # Workflow execution errors (E4xx)
    STEP_FAILED = "E401"
    STEP_TIMEOUT = "E402"
    WORKFLOW_TIMEOUT = "E403"
    WAIT_TIMEOUT = "E404"

    # Resilience errors (E5xx)
    RETRY_EXHAUSTED = "E501"

    # Capture errors (E6xx)
    CAPTURE_FAILED = "E601"

    # Unknown/internal errors (E9xx)
    UNKNOWN = "E999"

    @property
    def category(self) -> str:
        """Get the error category name."""
        code_num = int(self.value[1:])
        if code_num < 200:
            return "session"
        elif code_num < 300:
            return "validation"
        elif code_num < 400:
            return "data"
        elif code_num < 500:
            return "workflow"
        elif code_num < 600:
            return "resilience"
        elif code_num < 700:
            return "capture"
        else:
            return "unknown"


@dataclass
class ErrorContext:
    """Structured context for error logging and debugging.

    Attributes:
        workflow_name: Name of the workflow being executed.
        step_name: Name of the current step.
        app_id: Application the operation targeted.
        extra: Additional context-specific information.
        timestamp: When the error occurred.
        traceback: Full stack trace (if available).
    """

    workflow_name: str | None = None
    step_name: str | None = None
    app_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    traceback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for serialization."""
        result = {
            "workflow_name": self.workflow_name,
            "step_name": self.step_name,
            "app_id": self.app_id,
            "extra": self.extra,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback,
        }
        return {k: v for k, v in result.items() if v is not None}

    def format_location(self) -> str:
        """Format the error location as a readable string."""
        parts = []
        if self.workflow_name:
            parts.append(f"workflow={self.workflow_name}")
        if self.step_name:
            parts.append(f"step={self.step_name}")
        if self.app_id:
            parts.append(f"app={self.app_id}")
        return " > ".join(parts) if parts else "unknown location"


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors.

    Attributes:
        error_code: Unique ErrorCode for this error type
        message: Human-readable error description
        context: ErrorContext with execution details
        recoverable: Whether the error can be retried
        cause: The underlying exception (if any)

    Example:
        try:
            await engine.run(workflow)
        except SwitchyardError as e:
            print(f"Error [{e.error_code.value}]: {e.message}")
            for suggestion in e.suggestions:
                print(f"  - {suggestion}")
    """

    error_code: ErrorCode = ErrorCode.UNKNOWN
    default_message: str = "An unexpected error occurred"
    default_suggestions: list[str] = []
    default_recoverable: bool = True
    is_timeout: bool = False

    def __init__(
        self,
        message: str | None = None,
        error_code: ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
        recoverable: bool | None = None,
        suggestions: list[str] | None = None,
        **extra_context: Any,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.error_code
        self.context = context or ErrorContext()
        self.cause = cause
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self._suggestions = suggestions

        if extra_context:
            self.context.extra.update(extra_context)

        super().__init__(self.message)

    @property
    def suggestions(self) -> list[str]:
        """Get actionable suggestions for resolving this error."""
        if self._suggestions is not None:
            return self._suggestions
        return self.default_suggestions.copy()

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]

        location = self.context.format_location()
        if location != "unknown location":
            parts.append(f"at {location}")

        return " | ".join(parts)

    def format_verbose(self) -> str:
        """Format error with full details including suggestions."""
        lines = [
            f"Error [{self.error_code.value}]: {self.message}",
            "",
        ]

        location = self.context.format_location()
        if location != "unknown location":
            lines.append(f"Location: {location}")

        if self.cause is not None:
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for suggestion in self.suggestions:
                lines.append(f"  - {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_code": self.error_code.value,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "is_timeout": self.is_timeout,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


class SessionError(SwitchyardError):
    """Application session error."""

    error_code = ErrorCode.SESSION_FAILED
    default_message = "Application session operation failed"


class SessionNotFoundError(SessionError):
    """No session is registered for the requested application."""

    error_code = ErrorCode.SESSION_NOT_FOUND
    default_message = "No session registered for application"
    default_recoverable = False
    default_suggestions = [
        "Call initialize_app() or switch_to() before using the session",
        "Check the application id against the configured applications",
    ]


class SwitchFailedError(SessionError):
    """Bringing an application to the foreground failed.

    Raised by operations that cannot proceed without the switch. The
    switch itself never raises; it records the failure in its
    ContextSwitchResult.
    """

    error_code = ErrorCode.SWITCH_FAILED
    default_message = "Failed to switch application"
    default_suggestions = [
        "Check that the page for the application is still open",
        "Increase the readiness timeout if the application loads slowly",
    ]


class AuthenticationError(SessionError):
    """Authentication against an application failed."""

    error_code = ErrorCode.AUTHENTICATION_FAILED
    default_message = "Authentication failed"
    default_recoverable = False
    default_suggestions = [
        "Verify the credentials for this application",
        "Check the login path configured for the application",
    ]

    def __init__(
        self,
        app_id: str,
        message: str | None = None,
        cause: BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        self.app_id = app_id
        if message is None:
            detail = f": {cause}" if cause is not None else ""
            message = f"Authentication failed for {app_id}{detail}"
        context = kwargs.pop("context", None) or ErrorContext()
        context.app_id = app_id
        super().__init__(message=message, cause=cause, context=context, **kwargs)


class ValidationError(SwitchyardError):
    """Validation of user-provided input failed."""

    error_code = ErrorCode.INVALID_CONFIG
    default_message = "Validation failed"
    default_recoverable = False


class ConfigValidationError(ValidationError):
    """Configuration file or environment is invalid."""

    error_code = ErrorCode.INVALID_CONFIG
    default_message = "Invalid configuration"
    default_suggestions = [
        "Run 'switchyard config validate' to list configuration problems",
        "Check SWITCHYARD_* environment variables for typos",
    ]


class WorkflowDefinitionError(ValidationError):
    """A workflow definition is malformed."""

    error_code = ErrorCode.INVALID_WORKFLOW
    default_message = "Invalid workflow definition"


class WorkflowStateError(SwitchyardError):
    """Workflow state was used in a way that violates its lifecycle."""

    error_code = ErrorCode.STATE_CONFLICT
    default_message = "Workflow state conflict"
    default_recoverable = False


class StepExecutionError(SwitchyardError):
    """A workflow step failed."""

    error_code = ErrorCode.STEP_FAILED
    default_message = "Step execution failed"


class SwitchyardTimeoutError(SwitchyardError):
    """Operation timed out.

    Timeouts are distinguished from generic failures so that callers may
    apply a different retry policy to them.
    """

    error_code = ErrorCode.STEP_TIMEOUT
    default_message = "Operation timed out"
    is_timeout = True
    default_suggestions = [
        "Increase the timeout value in switchyard.yaml",
        "Check if the operation is expected to take this long",
    ]


class TransactionError(SwitchyardError):
    """A transactional unit could not be executed."""

    error_code = ErrorCode.TRANSACTION_FAILED
    default_message = "Transaction failed"


class RollbackError(TransactionError):
    """A compensating rollback failed."""

    error_code = ErrorCode.ROLLBACK_FAILED
    default_message = "Rollback failed"
    default_recoverable = False


class CleanupError(SwitchyardError):
    """Test data cleanup failed."""

    error_code = ErrorCode.CLEANUP_FAILED
    default_message = "Cleanup failed"


class CaptureError(SwitchyardError):
    """Screenshot or trace capture failed."""

    error_code = ErrorCode.CAPTURE_FAILED
    default_message = "Capture failed"


class RetryExhaustedError(SwitchyardError):
    """All retry attempts exhausted."""

    error_code = ErrorCode.RETRY_EXHAUSTED
    default_message = "All retry attempts exhausted"
    default_recoverable = False

    def __init__(
        self,
        message: str | None = None,
        attempts: int = 0,
        last_error: BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message=message, cause=last_error, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result
