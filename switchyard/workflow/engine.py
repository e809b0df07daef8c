"""Workflow engine - runs workflows step by step across applications."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Any

from switchyard.errors import (
    ErrorContext,
    RetryExhaustedError,
    RetryPolicy,
    SwitchFailedError,
    SwitchyardError,
    WorkflowDefinitionError,
    WorkflowStateError,
    WorkflowTimeoutError,
    execute_with_timeout_async,
)
from switchyard.observability.logging import log_context
from switchyard.sessions import SessionRegistry
from switchyard.workflow.capture import ScreenshotSink
from switchyard.workflow.context import StepError, WorkflowContext, WorkflowState
from switchyard.workflow.models import (
    StepRecord,
    StepStatus,
    Workflow,
    WorkflowOptions,
    WorkflowResult,
    WorkflowStatus,
    WorkflowStep,
    WorkflowValidation,
)

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Executes workflows against a SessionRegistry.

    Steps run strictly in declared order. Before a step runs, its target
    application is brought to the foreground; the step's return value is
    then stored under ``store_as``. A failing step either stops the run
    or, with ``continue_on_error``, is recorded and skipped past.

    Example:
        >>> engine = WorkflowEngine(registry, WorkflowOptions.from_config(config))
        >>> result = await engine.run(workflow)
        >>> result.raise_for_status()
        >>> order = result.state.results["order"]
    """

    def __init__(
        self,
        registry: SessionRegistry,
        options: WorkflowOptions | None = None,
        screenshot_sink: ScreenshotSink | None = None,
    ) -> None:
        self.registry = registry
        self.options = options or WorkflowOptions()
        self.screenshot_sink = screenshot_sink
        if self.screenshot_sink is None and self.options.capture_screenshots:
            self.screenshot_sink = ScreenshotSink(self.options.screenshot_dir)

    async def run(self, workflow: Workflow) -> WorkflowResult:
        """Execute a workflow and report what happened.

        Returns:
            The WorkflowResult. Failures are reported in it rather than
            raised, unless ``raise_on_failure`` is set.
        """
        records = [StepRecord(step_name=step.name) for step in workflow.steps]
        return await self._execute(workflow, WorkflowState(), records, start_index=0)

    async def resume(self, workflow: Workflow, previous: WorkflowResult) -> WorkflowResult:
        """Run ``workflow`` again from where ``previous`` stopped.

        Steps before ``previous.recovery_point()`` are not run again: their
        records are copied and the results they stored are carried over.
        Errors of the previous run are not carried over.

        Raises:
            WorkflowStateError: If ``previous`` belongs to another workflow
                or cannot be recovered.
        """
        context = ErrorContext(workflow_name=workflow.name)
        recorded = [record.step_name for record in previous.records]
        if previous.workflow_name != workflow.name or recorded != [s.name for s in workflow.steps]:
            raise WorkflowStateError(
                f"Result of '{previous.workflow_name}' does not match workflow '{workflow.name}'",
                context=context,
            )
        point = previous.recovery_point()
        if point < 0:
            raise WorkflowStateError(
                f"Workflow '{workflow.name}' cannot be resumed from status "
                f"{previous.status.value}",
                context=context,
            )

        done = {step.name for step in workflow.steps[:point]}
        carried = {
            key: owner for key, owner in previous.state.stored_by.items() if owner in done
        }
        state = WorkflowState(
            results={key: previous.state.results[key] for key in carried},
            stored_by=carried,
            checkpoints=previous.state.checkpoints.copy(),
        )
        records = [replace(r, screenshots=list(r.screenshots)) for r in previous.records[:point]]
        records += [StepRecord(step_name=step.name) for step in workflow.steps[point:]]

        logger.info(f"Resuming workflow {workflow.name} at step {point + 1}/{len(workflow.steps)}")
        return await self._execute(workflow, state, records, start_index=point)

    async def validate(self, workflow: Workflow) -> WorkflowValidation:
        """Check that ``workflow`` can run before running it.

        Every application the workflow uses must have a live session or a
        configured base URL, and every step ``check`` must report no
        problems. A check that raises is reported as a problem.
        """
        validation = WorkflowValidation(workflow_name=workflow.name)
        config = self.registry.config

        for app_id in workflow.applications:
            if self.registry.get_session(app_id) is not None:
                continue
            if app_id not in config.applications:
                validation.errors.append(f"Application '{app_id}' is not configured")
            elif not config.application(app_id).base_url:
                validation.errors.append(f"Application '{app_id}' has no base_url")

        context = WorkflowContext(self.registry, WorkflowState(), workflow.name)
        for step in workflow.steps:
            if step.check is None:
                continue
            context.step_name = step.name
            try:
                problems = step.check(context)
                if inspect.isawaitable(problems):
                    problems = await problems
            except Exception as e:
                logger.warning(f"Check of step {step.name} raised: {e}")
                problems = [f"check raised {type(e).__name__}: {e}"]
            validation.errors.extend(f"{step.name}: {problem}" for problem in problems or [])

        if validation.valid:
            logger.debug(f"Workflow {workflow.name} is valid")
        else:
            logger.warning(
                f"Workflow {workflow.name} failed validation: {len(validation.errors)} problem(s)"
            )
        return validation

    async def _execute(
        self,
        workflow: Workflow,
        state: WorkflowState,
        records: list[StepRecord],
        start_index: int,
    ) -> WorkflowResult:
        context = WorkflowContext(self.registry, state, workflow.name)
        result = WorkflowResult(workflow_name=workflow.name, state=state, records=records)

        with log_context(workflow=workflow.name):
            logger.info(f"Starting workflow: {workflow.name} ({len(workflow.steps)} steps)")
            start = time.monotonic()
            result.transition(WorkflowStatus.RUNNING)

            try:
                if await self._prepare(workflow, result):
                    await self._run_steps(workflow, context, result, start, start_index)
            finally:
                await self._teardown(workflow, context)
                result.finished_at = datetime.now()
                result.duration_ms = (time.monotonic() - start) * 1000

            logger.info(
                f"Workflow {workflow.name} finished: {result.status.value} "
                f"in {result.duration_ms:.0f}ms"
            )

        if self.options.raise_on_failure:
            result.raise_for_status()
        return result

    async def _prepare(self, workflow: Workflow, result: WorkflowResult) -> bool:
        """Validate and open sessions as configured; False fails the run."""
        if self.options.validate_before_run:
            validation = await self.validate(workflow)
            if not validation.valid:
                result.error = WorkflowDefinitionError(
                    f"Workflow '{workflow.name}' failed validation: "
                    + "; ".join(validation.errors),
                    context=ErrorContext(workflow_name=workflow.name),
                    problems=validation.errors,
                )
                self._abort_before_start(result)
                return False

        if self.options.initialize_applications:
            for app_id in workflow.applications:
                try:
                    await self.registry.initialize_app(app_id)
                except Exception as e:
                    logger.error(f"Could not initialize {app_id} for workflow {workflow.name}: {e}")
                    result.error = e
                    self._abort_before_start(result)
                    return False
        return True

    def _abort_before_start(self, result: WorkflowResult) -> None:
        for record in result.records:
            if record.status == StepStatus.PENDING:
                result.step_transition(record, StepStatus.SKIPPED)
        result.transition(WorkflowStatus.FAILED)

    async def _run_steps(
        self,
        workflow: Workflow,
        context: WorkflowContext,
        result: WorkflowResult,
        start: float,
        start_index: int = 0,
    ) -> None:
        default_app = self.registry.config.default_app
        if self.registry.get_current_app() is None and default_app:
            await self.registry.switch_to(default_app)

        for index in range(start_index, len(workflow.steps)):
            step, record = workflow.steps[index], result.records[index]
            elapsed = time.monotonic() - start
            if elapsed >= self.options.workflow_timeout:
                self._time_out(workflow, result, elapsed, started_steps=index)
                return

            with log_context(step=step.name):
                succeeded = await self._run_step(step, record, context, result)

            if not succeeded and not self.options.continue_on_error:
                logger.error(f"Aborting workflow {workflow.name} after step {step.name} failed")
                result.error = context.state.errors[-1].error
                self._skip_remaining(result, index + 1)
                result.transition(WorkflowStatus.FAILED)
                return

        elapsed = time.monotonic() - start
        if elapsed >= self.options.workflow_timeout:
            self._time_out(workflow, result, elapsed, started_steps=len(workflow.steps))
            return

        result.transition(WorkflowStatus.COMPLETED)

    async def _run_step(
        self,
        step: WorkflowStep,
        record: StepRecord,
        context: WorkflowContext,
        result: WorkflowResult,
    ) -> bool:
        """Run one step, returning whether it succeeded."""
        context.step_name = step.name
        record.started_at = datetime.now()
        result.step_transition(record, StepStatus.RUNNING)
        step_start = time.monotonic()
        timeout = step.timeout or self.options.step_timeout

        async def attempt() -> Any:
            record.attempts += 1
            if step.target_application:
                switch = await self.registry.switch_to(step.target_application)
                if not switch.success:
                    raise SwitchFailedError(
                        f"Failed to switch to {step.target_application}: {switch.error}",
                        context=ErrorContext(
                            workflow_name=context.workflow_name,
                            step_name=step.name,
                            app_id=step.target_application,
                        ),
                    )
            record.app_id = self.registry.get_current_app()
            return await execute_with_timeout_async(
                lambda: self._invoke(step, context), timeout, step_name=step.name
            )

        logger.info(f"Executing step {step.name} ({step.target_application or 'current app'})")
        try:
            if self.options.retry is not None and step.recoverable:
                value = await RetryPolicy(self.options.retry).execute_async(attempt)
            else:
                value = await attempt()
            if step.store_as is not None:
                context.store(step.store_as, value)
        except RetryExhaustedError as e:
            error = e.last_error or e
            self._fail_step(step, record, context, result, error, step_start)
        except Exception as e:
            self._fail_step(step, record, context, result, e, step_start)
        else:
            record.finished_at = datetime.now()
            record.duration_ms = (time.monotonic() - step_start) * 1000
            result.step_transition(record, StepStatus.COMPLETED)
            logger.info(f"Step {step.name} completed in {record.duration_ms:.0f}ms")
            await self._capture(context, step, record, failed=False)
            return True

        await self._capture(context, step, record, failed=True)
        return False

    @staticmethod
    async def _invoke(step: WorkflowStep, context: WorkflowContext) -> Any:
        value = step.execute(context)
        if inspect.isawaitable(value):
            value = await value
        return value

    def _fail_step(
        self,
        step: WorkflowStep,
        record: StepRecord,
        context: WorkflowContext,
        result: WorkflowResult,
        error: BaseException,
        step_start: float,
    ) -> None:
        if isinstance(error, SwitchyardError):
            error.context.workflow_name = error.context.workflow_name or context.workflow_name
            error.context.step_name = error.context.step_name or step.name

        record.finished_at = datetime.now()
        record.duration_ms = (time.monotonic() - step_start) * 1000
        record.error = str(error) or type(error).__name__
        result.step_transition(record, StepStatus.FAILED)

        context.state.record_error(
            StepError(
                step_name=step.name,
                app_id=record.app_id or step.target_application,
                error=error,
                recoverable=getattr(error, "recoverable", step.recoverable),
            )
        )
        logger.error(f"Step {step.name} failed after {record.attempts} attempt(s): {record.error}")

    async def _capture(
        self,
        context: WorkflowContext,
        step: WorkflowStep,
        record: StepRecord,
        failed: bool,
    ) -> None:
        if not self.options.capture_screenshots or self.screenshot_sink is None:
            return
        app_id = record.app_id or step.target_application
        session = self.registry.get_session(app_id) if app_id else None
        if session is None:
            return
        prefix = f"{context.workflow_name}_{step.name}{'_error' if failed else ''}"
        filename = await self.screenshot_sink.capture(session, prefix, app_id)
        if filename:
            record.screenshots.append(filename)

    def _skip_remaining(self, result: WorkflowResult, from_index: int) -> None:
        for record in result.records[from_index:]:
            result.step_transition(record, StepStatus.SKIPPED)

    def _time_out(
        self,
        workflow: Workflow,
        result: WorkflowResult,
        elapsed: float,
        started_steps: int,
    ) -> None:
        logger.error(f"Workflow {workflow.name} exceeded {self.options.workflow_timeout}s")
        result.error = WorkflowTimeoutError(
            workflow_name=workflow.name,
            timeout_seconds=self.options.workflow_timeout,
            elapsed_seconds=elapsed,
            completed_steps=started_steps,
            total_steps=len(workflow.steps),
        )
        self._skip_remaining(result, started_steps)
        result.transition(WorkflowStatus.TIMED_OUT)

    async def _teardown(self, workflow: Workflow, context: WorkflowContext) -> None:
        if workflow.teardown is None:
            return
        context.step_name = None
        try:
            value = workflow.teardown(context)
            if inspect.isawaitable(value):
                await value
        except Exception as e:
            logger.warning(f"Teardown of workflow {workflow.name} failed: {e}")
