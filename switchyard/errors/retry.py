"""Retry policies with backoff, and timeout helpers.

Retries in Switchyard are opt-in: a workflow step is only attempted more
than once when a RetryConfig is supplied and the step is marked
recoverable.

Example:
    >>> from switchyard.errors.retry import RetryPolicy, RetryConfig
    >>>
    >>> config = RetryConfig.from_yaml({
    ...     "max_attempts": 3,
    ...     "backoff": "exponential",
    ...     "initial_delay": 0.5,
    ...     "max_delay": 10.0,
    ...     "retry_on": ["ConnectionError", "Timeout"],
    ... })
    >>> policy = RetryPolicy(config)
    >>> result = await policy.execute_async(lambda: flaky_operation())
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from switchyard.errors.base import (
    ErrorCode,
    RetryExhaustedError,
    SessionError,
    StepExecutionError,
    SwitchFailedError,
    SwitchyardError,
    SwitchyardTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffStrategy(Enum):
    """Available backoff strategies.

    Attributes:
        FIXED: Same delay between each retry.
        LINEAR: Delay increases linearly (delay * attempt).
        EXPONENTIAL: Delay doubles each retry.
        EXPONENTIAL_FULL_JITTER: Exponential with random jitter (0 to exp_delay).
        EXPONENTIAL_EQUAL_JITTER: Exponential with half-jitter.
        EXPONENTIAL_DECORRELATED_JITTER: Decorrelated jitter.
    """

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_FULL_JITTER = "exponential_full_jitter"
    EXPONENTIAL_EQUAL_JITTER = "exponential_equal_jitter"
    EXPONENTIAL_DECORRELATED_JITTER = "exponential_decorrelated_jitter"

    @classmethod
    def from_string(cls, value: str) -> BackoffStrategy:
        """Create BackoffStrategy from string value.

        Args:
            value: Strategy name (e.g., "exponential", "linear", "fixed").

        Returns:
            Corresponding BackoffStrategy enum value.

        Raises:
            ValueError: If strategy name is not recognized.
        """
        normalized = value.lower().replace("-", "_").replace(" ", "_")
        aliases = {
            "exp": cls.EXPONENTIAL,
            "exp_jitter": cls.EXPONENTIAL_FULL_JITTER,
        }
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(sorted([s.value for s in cls] + list(aliases)))
            raise ValueError(f"Unknown backoff strategy: {value}. Valid: {valid}") from None


class StepTimeoutError(SwitchyardTimeoutError):
    """Raised when a single workflow step exceeds its timeout."""

    error_code = ErrorCode.STEP_TIMEOUT
    default_message = "Step execution timed out"

    def __init__(
        self,
        message: str | None = None,
        step_name: str | None = None,
        timeout_seconds: float | None = None,
        elapsed_seconds: float | None = None,
        **kwargs: Any,
    ) -> None:
        self.step_name = step_name
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds

        if message is None:
            message = self._build_message()

        super().__init__(message=message, **kwargs)
        if step_name and not self.context.step_name:
            self.context.step_name = step_name

    def _build_message(self) -> str:
        parts = []
        if self.step_name:
            parts.append(f"Step '{self.step_name}' timed out")
        else:
            parts.append("Step timed out")
        if self.timeout_seconds is not None:
            parts.append(f"after {self.timeout_seconds:.1f}s timeout")
        if self.elapsed_seconds is not None:
            parts.append(f"(elapsed: {self.elapsed_seconds:.2f}s)")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({
            "step_name": self.step_name,
            "timeout_seconds": self.timeout_seconds,
            "elapsed_seconds": self.elapsed_seconds,
        })
        return result


class WorkflowTimeoutError(SwitchyardTimeoutError):
    """Raised when a workflow exceeds its overall timeout.

    The overall timeout only prevents new steps from starting; the step
    that was running when the budget ran out is allowed to finish.
    """

    error_code = ErrorCode.WORKFLOW_TIMEOUT
    default_message = "Workflow execution timed out"

    def __init__(
        self,
        message: str | None = None,
        workflow_name: str | None = None,
        timeout_seconds: float | None = None,
        elapsed_seconds: float | None = None,
        completed_steps: int = 0,
        total_steps: int = 0,
        **kwargs: Any,
    ) -> None:
        self.workflow_name = workflow_name
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        self.completed_steps = completed_steps
        self.total_steps = total_steps

        if message is None:
            message = self._build_message()

        super().__init__(message=message, **kwargs)
        if workflow_name and not self.context.workflow_name:
            self.context.workflow_name = workflow_name

    def _build_message(self) -> str:
        parts = []
        if self.workflow_name:
            parts.append(f"Workflow '{self.workflow_name}' timed out")
        else:
            parts.append("Workflow timed out")
        if self.timeout_seconds is not None:
            parts.append(f"after {self.timeout_seconds:.1f}s")
        if self.total_steps > 0:
            parts.append(f"({self.completed_steps}/{self.total_steps} steps started)")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({
            "workflow_name": self.workflow_name,
            "timeout_seconds": self.timeout_seconds,
            "elapsed_seconds": self.elapsed_seconds,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
        })
        return result


class WaitTimeoutError(SwitchyardTimeoutError):
    """Raised when a wait/poll operation times out."""

    error_code = ErrorCode.WAIT_TIMEOUT
    default_message = "Wait operation timed out"

    def __init__(
        self,
        message: str | None = None,
        condition_description: str | None = None,
        timeout_seconds: float | None = None,
        elapsed_seconds: float | None = None,
        poll_attempts: int = 0,
        last_value: Any = None,
        **kwargs: Any,
    ) -> None:
        """Initialize wait timeout error with context.

        Args:
            message: Custom error message.
            condition_description: Description of what was being waited for.
            timeout_seconds: Configured timeout value.
            elapsed_seconds: Actual elapsed time.
            poll_attempts: Number of poll attempts made.
            last_value: Last observed value before timeout.
            **kwargs: Additional context passed to base class.
        """
        self.condition_description = condition_description
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        self.poll_attempts = poll_attempts
        self.last_value = last_value

        if message is None:
            message = self._build_message()

        super().__init__(message=message, **kwargs)

    def _build_message(self) -> str:
        parts = ["Timeout"]
        if self.elapsed_seconds is not None:
            parts.append(f"after {self.elapsed_seconds:.1f}s")
        if self.condition_description:
            parts.append(f"waiting for: {self.condition_description}")
        if self.poll_attempts > 0:
            parts.append(f"({self.poll_attempts} attempts)")
        if self.last_value is not None:
            parts.append(f"[last value: {self.last_value!r}]")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({
            "condition_description": self.condition_description,
            "timeout_seconds": self.timeout_seconds,
            "elapsed_seconds": self.elapsed_seconds,
            "poll_attempts": self.poll_attempts,
            "last_value": repr(self.last_value) if self.last_value is not None else None,
        })
        return result


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        base_delay: Initial delay between retries (seconds).
        max_delay: Maximum delay between retries (seconds).
        backoff_strategy: Strategy for calculating retry delays.
        exponential_base: Base for exponential backoff.
        retryable_exceptions: Exception types that may be retried.
        retry_on_timeout: Whether timeout errors are retried.
        on_retry: Callback invoked before each retry.

    Example:
        >>> config = RetryConfig.from_yaml({
        ...     "max_attempts": 3,
        ...     "backoff": "linear",
        ...     "initial_delay": 1.0,
        ...     "retry_on": ["Exception"],
        ...     "retry_on_timeout": True,
        ... })
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_FULL_JITTER
    exponential_base: float = 2.0
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,)
    retry_on_timeout: bool = False
    on_retry: Callable[[int, BaseException, float], None] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")

    @classmethod
    def from_yaml(cls, config: dict[str, Any]) -> RetryConfig:
        """Create RetryConfig from YAML/dict configuration.

        Supports the following YAML format:
            retry:
              max_attempts: 3
              backoff: exponential  # or linear, fixed
              initial_delay: 1.0
              max_delay: 30.0
              retry_on_timeout: false
              retry_on:
                - ConnectionError
                - StepExecutionError

        Args:
            config: Dictionary configuration (from YAML or direct).

        Returns:
            Configured RetryConfig instance.
        """
        if "retry" in config:
            config = config["retry"]

        backoff_value = config.get("backoff", config.get("backoff_strategy", "exponential"))
        if isinstance(backoff_value, BackoffStrategy):
            backoff = backoff_value
        else:
            backoff = BackoffStrategy.from_string(str(backoff_value))

        exception_mapping: dict[str, type[BaseException]] = {
            "connectionerror": ConnectionError,
            "timeout": TimeoutError,
            "timeouterror": TimeoutError,
            "oserror": OSError,
            "exception": Exception,
            "switchyarderror": SwitchyardError,
            "stepexecutionerror": StepExecutionError,
            "switchfailederror": SwitchFailedError,
            "sessionerror": SessionError,
        }

        exception_types: list[type[BaseException]] = []
        for item in config.get("retry_on", []):
            key = str(item).lower().replace("_", "").replace("-", "")
            if key in exception_mapping:
                exception_types.append(exception_mapping[key])
            else:
                logger.warning(f"Unknown exception type in retry config: {item}")

        return cls(
            max_attempts=int(config.get("max_attempts", 3)),
            base_delay=float(config.get("initial_delay", config.get("base_delay", 1.0))),
            max_delay=float(config.get("max_delay", 30.0)),
            backoff_strategy=backoff,
            exponential_base=float(config.get("exponential_base", 2.0)),
            retryable_exceptions=tuple(exception_types) or (Exception,),
            retry_on_timeout=bool(config.get("retry_on_timeout", False)),
        )

    def to_yaml(self) -> dict[str, Any]:
        """Convert to YAML-compatible dictionary."""
        return {
            "max_attempts": self.max_attempts,
            "backoff": self.backoff_strategy.value,
            "initial_delay": self.base_delay,
            "max_delay": self.max_delay,
            "exponential_base": self.exponential_base,
            "retry_on_timeout": self.retry_on_timeout,
            "retry_on": [exc.__name__ for exc in self.retryable_exceptions],
        }


class RetryPolicy:
    """Configurable retry policy with various backoff strategies."""

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt number (0-indexed)."""
        strategy = self.config.backoff_strategy
        base = self.config.base_delay

        if strategy == BackoffStrategy.FIXED:
            delay = base

        elif strategy == BackoffStrategy.LINEAR:
            delay = base * (attempt + 1)

        elif strategy == BackoffStrategy.EXPONENTIAL:
            delay = base * (self.config.exponential_base**attempt)

        elif strategy == BackoffStrategy.EXPONENTIAL_FULL_JITTER:
            delay = random.uniform(0, base * (self.config.exponential_base**attempt))

        elif strategy == BackoffStrategy.EXPONENTIAL_EQUAL_JITTER:
            exponential_delay = base * (self.config.exponential_base**attempt)
            delay = exponential_delay / 2 + random.uniform(0, exponential_delay / 2)

        elif strategy == BackoffStrategy.EXPONENTIAL_DECORRELATED_JITTER:
            if attempt == 0:
                delay = random.uniform(0, base)
            else:
                delay = random.uniform(base, min(base * 3, self.config.max_delay))

        else:
            delay = base

        return min(delay, self.config.max_delay)

    def should_retry(self, exception: BaseException, attempt: int) -> bool:
        """Determine if the operation should be retried.

        Args:
            exception: The error raised by the last attempt.
            attempt: Zero-based index of the attempt that failed.
        """
        if attempt + 1 >= self.config.max_attempts:
            return False
        return self.is_retryable(exception)

    def is_retryable(self, exception: BaseException) -> bool:
        """Classify an error independently of the attempt count."""
        if isinstance(exception, SwitchyardError):
            if exception.is_timeout and not self.config.retry_on_timeout:
                return False
            if not exception.recoverable:
                return False
        elif isinstance(exception, (asyncio.TimeoutError, TimeoutError)):
            if not self.config.retry_on_timeout:
                return False

        return isinstance(exception, self.config.retryable_exceptions)

    async def execute_async(self, operation: Callable[[], Awaitable[T] | T]) -> T:
        """Execute an operation with retry logic.

        Errors that are not retryable propagate unchanged. When every
        attempt failed with a retryable error, RetryExhaustedError is
        raised with the last error attached.
        """
        last_error: BaseException | None = None

        for attempt in range(self.config.max_attempts):
            try:
                result = operation()
                if inspect.isawaitable(result):
                    return await result
                return result
            except Exception as e:
                last_error = e

                if not self.is_retryable(e):
                    raise
                if attempt + 1 >= self.config.max_attempts:
                    break

                delay = self.calculate_delay(attempt)
                if self.config.on_retry:
                    self.config.on_retry(attempt + 1, e, delay)

                logger.warning(
                    f"Retry {attempt + 1}/{self.config.max_attempts} "
                    f"after {delay:.2f}s due to: {e}"
                )
                await asyncio.sleep(delay)

        raise RetryExhaustedError(
            message=f"All {self.config.max_attempts} retry attempts exhausted",
            attempts=self.config.max_attempts,
            last_error=last_error,
        )


class _OperationTimeout(Exception):
    """Carries a TimeoutError raised by the operation itself past wait_for."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


async def execute_with_timeout_async(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    step_name: str | None = None,
) -> T:
    """Execute an async operation with a timeout.

    Only the expiry of ``timeout`` becomes a StepTimeoutError. A
    TimeoutError raised by the operation itself (for example from an
    inner ``asyncio.wait_for``) propagates unchanged.

    Args:
        operation: Async callable to execute.
        timeout: Timeout in seconds.
        step_name: Step name for the error message.

    Returns:
        Result of the operation.

    Raises:
        StepTimeoutError: If operation times out.
    """

    async def guarded() -> T:
        try:
            return await operation()
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise _OperationTimeout(e) from e

    start_time = time.monotonic()
    inner_error: BaseException | None = None
    try:
        return await asyncio.wait_for(guarded(), timeout=timeout)
    except _OperationTimeout as wrapped:
        inner_error = wrapped.error
    except asyncio.TimeoutError as e:
        elapsed = time.monotonic() - start_time
        raise StepTimeoutError(
            step_name=step_name,
            timeout_seconds=timeout,
            elapsed_seconds=elapsed,
        ) from e
    raise inner_error
