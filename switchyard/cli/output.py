"""Rich console output for the switchyard CLI."""

from __future__ import annotations

import sys
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from switchyard.config import SwitchyardConfig
from switchyard.workflow import StepStatus, WorkflowResult, WorkflowStatus

STATUS_STYLES = {
    StepStatus.COMPLETED: ("✓", "green"),
    StepStatus.FAILED: ("✗", "red"),
    StepStatus.SKIPPED: ("-", "yellow"),
    StepStatus.PENDING: ("·", "dim"),
    StepStatus.RUNNING: ("…", "blue"),
}

WORKFLOW_STYLES = {
    WorkflowStatus.COMPLETED: "green",
    WorkflowStatus.FAILED: "red",
    WorkflowStatus.TIMED_OUT: "red",
}


class CLIOutput:
    """Prints configuration and workflow results to a rich Console."""

    def __init__(self, console: Console | None = None, use_colors: bool | None = None) -> None:
        if use_colors is None:
            use_colors = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
        self.console = console or Console(no_color=not use_colors, highlight=False)

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {escape(message)}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {escape(message)}")

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {escape(message)}")

    def config_table(self, config: SwitchyardConfig) -> None:
        """Resolved configuration: general settings, then one row per application."""
        general = Table(title=f"Configuration ({config.environment})", show_header=False)
        general.add_column("Setting", style="bold")
        general.add_column("Value")
        general.add_row("default_app", str(config.default_app or "-"))
        general.add_row("log_level", config.log_level)
        general.add_row("json_logs", str(config.json_logs))
        general.add_row("switch_history_limit", str(config.switch_history_limit or "unbounded"))
        for key, value in config.workflow.model_dump().items():
            general.add_row(f"workflow.{key}", str(value))
        general.add_row("retry", _format_retry(config.retry))
        self.console.print(general)

        if not config.applications:
            self.warning("No applications configured")
            return

        apps = Table(title="Applications")
        apps.add_column("App", style="bold cyan")
        apps.add_column("Base URL")
        apps.add_column("Login path")
        apps.add_column("API login path")
        apps.add_column("Ready on")
        for app_id, app in config.applications.items():
            apps.add_row(
                app_id,
                app.base_url or "-",
                app.login_path,
                app.api_login_path,
                app.readiness_state,
            )
        self.console.print(apps)

    def workflow_result(self, result: WorkflowResult) -> None:
        """Summary panel, step table and errors of one workflow run."""
        style = WORKFLOW_STYLES.get(result.status, "yellow")
        metrics = result.metrics
        summary = (
            f"[bold]Status:[/bold] [{style}]{result.status.value.upper()}[/{style}]\n"
            f"[bold]Duration:[/bold] {result.duration_ms / 1000:.2f}s\n"
            f"[bold]Steps:[/bold] {metrics.completed_steps}/{len(result.records)} completed, "
            f"{metrics.error_count} error(s), {metrics.retry_count} retry(ies)\n"
            f"[bold]Application switches:[/bold] {metrics.application_switches}"
        )
        self.console.print(
            Panel(summary, title=f"Workflow: {result.workflow_name}", border_style=style)
        )

        table = Table(show_lines=False)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Step")
        table.add_column("App", style="cyan")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Duration", justify="right")
        for index, record in enumerate(result.records, start=1):
            symbol, color = STATUS_STYLES[record.status]
            table.add_row(
                str(index),
                escape(record.step_name),
                record.app_id or "-",
                f"[{color}]{symbol} {record.status.value}[/{color}]",
                str(record.attempts),
                f"{record.duration_ms:.0f}ms",
            )
        self.console.print(table)

        for error in result.state.errors:
            self.error(f"{error.step_name} [{error.app_id or '-'}]: {error.message}")
        if result.error is not None and not result.state.errors:
            self.error(str(result.error))


def _format_retry(retry: dict[str, Any] | None) -> str:
    if not retry:
        return "disabled"
    return ", ".join(f"{k}={v}" for k, v in retry.items())
