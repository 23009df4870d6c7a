"""taskpilot run — run prompts through the agent and stream their output."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from taskpilot.adapter.process import CliNotFoundError
from taskpilot.config.models import PilotConfig
from taskpilot.config.parser import ConfigError, load_config
from taskpilot.manager import TaskAdmissionError, TaskCallbacks, TaskManager
from taskpilot.models import (
    PermissionRequest,
    ProgressUpdate,
    TaskConfig,
    TaskMessage,
    TaskResult,
    TaskStatus,
    TodoItem,
)

_STATUS_COLORS = {
    "success": "green",
    "partial": "yellow",
    "blocked": "yellow",
    "interrupted": "yellow",
    "cancelled": "yellow",
    "error": "red",
}


@click.command()
@click.argument("prompts", nargs=-1, required=True)
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "-C",
    "--cwd",
    "working_directory",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory the agent works in.",
)
@click.option("--model", "model_id", default=None, help="Model passed to the agent CLI.")
@click.option("--session", "session_id", default=None, help="Resume an existing session.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def run(
    prompts: tuple[str, ...],
    config_file: str | None,
    working_directory: str | None,
    model_id: str | None,
    session_id: str | None,
    verbose: bool,
) -> None:
    """Run each PROMPT as a task and print what the agent does."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    configs = [
        TaskConfig(
            prompt=prompt,
            working_directory=working_directory,
            session_id=session_id,
            model_id=model_id,
        )
        for prompt in prompts
    ]
    results = asyncio.run(_run_tasks(config, configs, verbose))
    if any(r is None or r.status != "success" for r in results):
        raise SystemExit(1)


async def _run_tasks(
    config: PilotConfig,
    configs: list[TaskConfig],
    verbose: bool,
) -> list[TaskResult | None]:
    """Submit every task, wait for all of them, and return their results."""
    manager = TaskManager(config)
    loop = asyncio.get_running_loop()
    futures: list[asyncio.Future[TaskResult | None]] = []

    try:
        for index, task_config in enumerate(configs, start=1):
            task_id = f"task-{index}"
            future: asyncio.Future[TaskResult | None] = loop.create_future()
            futures.append(future)
            try:
                task = await manager.start_task(
                    task_id, task_config, _console_callbacks(task_id, future, verbose)
                )
            except CliNotFoundError as exc:
                click.echo(click.style(f"Error: {exc}", fg="red"), err=True)
                future.set_result(None)
                break
            except TaskAdmissionError as exc:
                click.echo(click.style(f"[{task_id}] rejected: {exc}", fg="red"), err=True)
                future.set_result(None)
                continue
            if task.status == "queued":
                position = manager.get_queue_position(task_id)
                click.echo(click.style(f"[{task_id}] queued (position {position})", dim=True))

        pending = [f for f in futures if not f.done()]
        if pending:
            await asyncio.wait(pending)
    finally:
        await manager.dispose()

    return [f.result() if f.done() and not f.cancelled() else None for f in futures]


def _console_callbacks(
    task_id: str,
    future: asyncio.Future[TaskResult | None],
    verbose: bool,
) -> TaskCallbacks:
    prefix = click.style(f"[{task_id}] ", fg="cyan")

    def on_message(messages: list[TaskMessage]) -> None:
        for message in messages:
            if message.type == "tool":
                click.echo(prefix + click.style(message.content, dim=True))
            else:
                click.echo(prefix + message.content)

    def on_progress(progress: ProgressUpdate) -> None:
        if verbose:
            click.echo(prefix + click.style(f"… {progress.stage}", dim=True))

    def on_permission_request(request: PermissionRequest) -> None:
        click.echo(
            prefix
            + click.style(f"⚠ agent requested permission ({request.type})", fg="yellow")
        )

    def on_todo_update(todos: list[TodoItem]) -> None:
        done = sum(1 for t in todos if not t.is_open)
        click.echo(prefix + click.style(f"todos: {done}/{len(todos)} done", dim=True))

    def on_status_change(status: TaskStatus) -> None:
        if status == "running":
            click.echo(prefix + click.style("started", dim=True))
        elif status == "cancelled" and not future.done():
            future.set_result(TaskResult(status="cancelled"))

    def on_complete(result: TaskResult) -> None:
        color = _STATUS_COLORS.get(result.status, "white")
        click.echo(prefix + click.style(f"● {result.status}", fg=color, bold=True))
        if result.summary:
            click.echo(prefix + result.summary)
        if result.remaining_work:
            click.echo(prefix + click.style(f"remaining: {result.remaining_work}", fg="yellow"))
        if result.error:
            click.echo(prefix + click.style(result.error, fg="red"), err=True)
        if not future.done():
            future.set_result(result)

    def on_error(error: Exception) -> None:
        click.echo(prefix + click.style(f"✗ {error}", fg="red"), err=True)
        if not future.done():
            future.set_result(TaskResult(status="error", error=str(error)))

    return TaskCallbacks(
        on_message=on_message,
        on_progress=on_progress,
        on_permission_request=on_permission_request,
        on_complete=on_complete,
        on_error=on_error,
        on_status_change=on_status_change,
        on_todo_update=on_todo_update,
    )
