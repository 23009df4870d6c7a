"""taskpilot check — report whether the agent CLI can be found."""

from __future__ import annotations

from pathlib import Path

import click

from taskpilot.adapter.environment import resolve_cli
from taskpilot.config.parser import ConfigError, load_config


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
def check(config_file: str | None) -> None:
    """Check that the configured agent CLI is installed."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    command = config.cli.command
    path = resolve_cli(command)
    if path is None:
        click.echo(click.style(f"✗ Agent CLI '{command}' not found", fg="red"), err=True)
        raise SystemExit(1)

    click.echo(click.style(f"✓ Agent CLI '{command}' found at {path}", fg="green"))
    click.echo(
        f"  max concurrent tasks: {config.max_concurrent_tasks}, "
        f"queue length: {config.max_queue_length}"
    )
