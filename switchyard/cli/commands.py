"""CLI commands for Switchyard."""

from __future__ import annotations

import asyncio
import importlib
import inspect
import json
import os
import sys
from typing import Any

import click

from switchyard.cli.output import CLIOutput
from switchyard.config import SwitchyardConfig, load_config
from switchyard.errors import ConfigValidationError
from switchyard.observability import configure_logging
from switchyard.workflow import WorkflowResult, write_markdown


def _load(ctx: click.Context) -> SwitchyardConfig:
    """Load configuration once per invocation and configure logging from it."""
    if "config" not in ctx.obj:
        config = load_config(ctx.obj["config_path"], ctx.obj["environment"])
        level = "DEBUG" if ctx.obj["verbose"] else config.log_level
        configure_logging(level=level, json_format=config.json_logs)
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _resolve_target(target: str) -> Any:
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise click.BadParameter(f"expected 'module:attribute', got '{target}'", param_hint="TARGET")

    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import '{module_name}': {e}", param_hint="TARGET") from e

    obj: Any = module
    for name in attribute.split("."):
        try:
            obj = getattr(obj, name)
        except AttributeError as e:
            raise click.BadParameter(
                f"'{module_name}' has no attribute '{attribute}'", param_hint="TARGET"
            ) from e
    if not callable(obj):
        raise click.BadParameter(f"'{target}' is not callable", param_hint="TARGET")
    return obj


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Path to config file")
@click.option("--env", "-e", "environment", help="Environment overlay to apply")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, environment: str | None, verbose: bool) -> None:
    """Switchyard - multi-application workflow orchestration."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["environment"] = environment
    ctx.obj["verbose"] = verbose
    ctx.obj["output"] = CLIOutput()


@cli.group("config")
def config_group() -> None:
    """Inspect and validate configuration."""


@config_group.command("show")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@click.pass_context
def config_show(ctx: click.Context, as_json: bool) -> None:
    """Show the resolved configuration."""
    output: CLIOutput = ctx.obj["output"]
    try:
        config = _load(ctx)
    except ConfigValidationError as e:
        output.error(e.message)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(config.model_dump(mode="json"), indent=2))
    else:
        output.config_table(config)


@config_group.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate the configuration; exits 1 when it is invalid."""
    output: CLIOutput = ctx.obj["output"]
    try:
        config = _load(ctx)
    except ConfigValidationError as e:
        output.error("Configuration is invalid")
        for problem in e.context.extra.get("problems") or [e.message]:
            output.error(f"  {problem}")
        sys.exit(1)

    output.success(
        f"Configuration is valid ({config.environment}, "
        f"{len(config.applications)} application(s))"
    )


@cli.command()
@click.argument("target")
@click.option("--report", "report_path", type=click.Path(dir_okay=False), help="Write a Markdown report")
@click.pass_context
def run(ctx: click.Context, target: str, report_path: str | None) -> None:
    """Run a workflow.

    TARGET is ``module:attribute`` naming a callable that takes the
    configuration and returns (or resolves to) a WorkflowResult.
    """
    output: CLIOutput = ctx.obj["output"]
    try:
        config = _load(ctx)
    except ConfigValidationError as e:
        output.error(e.message)
        sys.exit(1)

    runner = _resolve_target(target)
    outcome = runner(config)
    if inspect.isawaitable(outcome):
        outcome = asyncio.run(_await(outcome))

    if not isinstance(outcome, WorkflowResult):
        output.error(f"'{target}' returned {type(outcome).__name__}, expected WorkflowResult")
        sys.exit(2)

    output.workflow_result(outcome)
    if report_path:
        written = write_markdown(outcome, report_path)
        output.info(f"Report written to {written}")

    sys.exit(0 if outcome.success else 1)


async def _await(awaitable: Any) -> Any:
    return await awaitable
