"""Workflow definitions, execution and reporting."""

from switchyard.workflow.capture import ScreenshotSink
from switchyard.workflow.context import Checkpoint, StepError, WorkflowContext, WorkflowState
from switchyard.workflow.engine import WorkflowEngine
from switchyard.workflow.models import (
    StatusTransition,
    StepRecord,
    StepStatus,
    Workflow,
    WorkflowMetrics,
    WorkflowOptions,
    WorkflowResult,
    WorkflowStatus,
    WorkflowStep,
    WorkflowValidation,
)
from switchyard.workflow.report import render_markdown, render_summary, write_markdown

__all__ = [
    "Checkpoint",
    "ScreenshotSink",
    "StatusTransition",
    "StepError",
    "StepRecord",
    "StepStatus",
    "Workflow",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowMetrics",
    "WorkflowOptions",
    "WorkflowResult",
    "WorkflowState",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowValidation",
    "render_markdown",
    "render_summary",
    "write_markdown",
]
