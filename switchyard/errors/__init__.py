"""Error types and resilience helpers for Switchyard."""

from switchyard.errors.base import (
    AuthenticationError,
    CaptureError,
    CleanupError,
    ConfigValidationError,
    ErrorCode,
    ErrorContext,
    RetryExhaustedError,
    RollbackError,
    SessionError,
    SessionNotFoundError,
    StepExecutionError,
    SwitchFailedError,
    SwitchyardError,
    SwitchyardTimeoutError,
    TransactionError,
    ValidationError,
    WorkflowDefinitionError,
    WorkflowStateError,
)
from switchyard.errors.retry import (
    BackoffStrategy,
    RetryConfig,
    RetryPolicy,
    StepTimeoutError,
    WaitTimeoutError,
    WorkflowTimeoutError,
    execute_with_timeout_async,
)

__all__ = [
    "AuthenticationError",
    "BackoffStrategy",
    "CaptureError",
    "CleanupError",
    "ConfigValidationError",
    "ErrorCode",
    "ErrorContext",
    "RetryConfig",
    "RetryExhaustedError",
    "RetryPolicy",
    "RollbackError",
    "SessionError",
    "SessionNotFoundError",
    "StepExecutionError",
    "StepTimeoutError",
    "SwitchFailedError",
    "SwitchyardError",
    "SwitchyardTimeoutError",
    "TransactionError",
    "ValidationError",
    "WaitTimeoutError",
    "WorkflowDefinitionError",
    "WorkflowStateError",
    "WorkflowTimeoutError",
    "execute_with_timeout_async",
]
