"""Switchyard CLI - command line interface for Switchyard."""

from switchyard.cli.commands import cli
from switchyard.cli.output import CLIOutput


def main() -> None:
    """Main entry point for the switchyard CLI."""
    cli()


__all__ = ["main", "cli", "CLIOutput"]
