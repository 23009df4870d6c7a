"""Default argument and environment builders for agent subprocesses."""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable
from pathlib import Path

from taskpilot.config.models import CliConfig
from taskpilot.constants import TASK_ID_ENV
from taskpilot.models import TaskConfig

#: Builds the arguments that follow the executable for one invocation.
CliArgsBuilder = Callable[[TaskConfig], list[str]]

#: Builds the full environment for one agent process.
EnvironmentBuilder = Callable[[str, TaskConfig], dict[str, str]]


def resolve_cli(command: str) -> str | None:
    """Return the absolute path of *command*, or ``None`` if it cannot be run.

    A bare name is looked up on ``PATH``; anything containing a path
    separator must point at an executable file.
    """
    if os.sep in command or (os.altsep and os.altsep in command):
        path = Path(command).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return str(path.resolve())
        return None
    return shutil.which(command)


def is_cli_available(cli: CliConfig) -> bool:
    return resolve_cli(cli.command) is not None


def build_cli_args(config: TaskConfig, cli: CliConfig) -> list[str]:
    """``run --format json [extra] [--session id] [--model id] <prompt>``."""
    args = ["run", "--format", "json", *cli.extra_args]
    if config.session_id:
        args.extend(["--session", config.session_id])
    if config.model_id:
        args.extend(["--model", config.model_id])
    if config.system_prompt_append and cli.system_prompt_flag:
        args.extend([cli.system_prompt_flag, config.system_prompt_append])
    args.append(config.prompt)
    return args


def build_environment(task_id: str, config: TaskConfig, cli: CliConfig) -> dict[str, str]:
    """Inherit the current environment, apply configured overrides, tag the task."""
    env = {k: v for k, v in os.environ.items() if k not in set(cli.strip_env)}
    env.update(cli.env)
    env[TASK_ID_ENV] = task_id
    return env


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    return "\n  ".join(lines[-max_lines:])
