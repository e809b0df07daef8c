"""Plain-text and Markdown renderings of a workflow result."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from switchyard.workflow.models import StepStatus, WorkflowResult

STATUS_ICONS = {
    StepStatus.COMPLETED: "✅",
    StepStatus.FAILED: "❌",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.PENDING: "⏳",
    StepStatus.RUNNING: "▶️",
}


def render_summary(result: WorkflowResult) -> str:
    """One-paragraph summary suitable for logs."""
    metrics = result.metrics
    lines = [
        f"Workflow '{result.workflow_name}': {result.status.value.upper()} "
        f"in {result.duration_ms / 1000:.2f}s",
        f"Steps: {metrics.completed_steps}/{len(result.records)} completed, "
        f"{metrics.error_count} error(s), {metrics.retry_count} retry(ies), "
        f"{metrics.application_switches} application switch(es)",
    ]
    for error in result.state.errors:
        lines.append(f"  - {error.step_name} [{error.app_id or '-'}]: {error.message}")
    if result.error is not None and not result.state.errors:
        lines.append(f"  - {result.error}")
    return "\n".join(lines)


def render_markdown(result: WorkflowResult) -> str:
    """Markdown report with a step table, errors and status timeline."""
    sections = [
        _header(result),
        _summary(result),
        _steps(result),
        _errors(result),
        _timeline(result),
    ]
    return "\n\n".join(s for s in sections if s) + "\n"


def write_markdown(result: WorkflowResult, path: str | Path) -> Path:
    """Write the Markdown report, creating parent directories."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(render_markdown(result), encoding="utf-8")
    return output


def _header(result: WorkflowResult) -> str:
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return f"""# Workflow Report: {result.workflow_name}

**Generated:** {timestamp}
**Status:** {result.status.value.upper()}
**Duration:** {result.duration_ms / 1000:.2f}s"""


def _summary(result: WorkflowResult) -> str:
    metrics = result.metrics
    return f"""## Summary

| Metric | Value |
|--------|-------|
| Steps executed | {metrics.executed_steps}/{len(result.records)} |
| Success rate | {metrics.success_rate * 100:.1f}% |
| Errors | {metrics.error_count} |
| Retries | {metrics.retry_count} |
| Application switches | {metrics.application_switches} |"""


def _steps(result: WorkflowResult) -> str:
    if not result.records:
        return ""
    lines = [
        "## Steps",
        "",
        "| # | Step | Application | Status | Attempts | Duration |",
        "|---|------|-------------|--------|----------|----------|",
    ]
    for index, record in enumerate(result.records, start=1):
        icon = STATUS_ICONS.get(record.status, "")
        lines.append(
            f"| {index} | {record.step_name} | {record.app_id or '-'} | "
            f"{icon} {record.status.value} | {record.attempts} | {record.duration_ms:.0f}ms |"
        )
    screenshots = [(r.step_name, s) for r in result.records for s in r.screenshots]
    if screenshots:
        lines.append("")
        lines.append("**Screenshots:**")
        for step_name, filename in screenshots:
            lines.append(f"- {step_name}: `{filename}`")
    return "\n".join(lines)


def _errors(result: WorkflowResult) -> str:
    if not result.state.errors and result.error is None:
        return ""
    lines = ["## Errors", ""]
    for error in result.state.errors:
        lines.append(f"### ❌ {error.step_name}")
        lines.append(f"**Application:** {error.app_id or '-'}")
        lines.append(f"**Type:** {type(error.error).__name__}")
        lines.append(f"**Message:** {error.message}")
        lines.append("")
    if result.error is not None and not result.state.errors:
        lines.append(f"**{type(result.error).__name__}:** {result.error}")
    return "\n".join(lines).rstrip()


def _timeline(result: WorkflowResult) -> str:
    if not result.transitions:
        return ""
    lines = ["## Timeline", ""]
    for transition in result.transitions:
        time_str = transition.timestamp.strftime("%H:%M:%S.%f")[:-3]
        lines.append(
            f"- `{time_str}` {transition.subject}: "
            f"{transition.from_status} → {transition.to_status}"
        )
    return "\n".join(lines)
