"""Root CLI group and version flag."""

import click

from taskpilot import __version__
from taskpilot.commands.check import check
from taskpilot.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="taskpilot")
def cli() -> None:
    """taskpilot — run coding-agent tasks with bounded concurrency."""


cli.add_command(run)
cli.add_command(check)
