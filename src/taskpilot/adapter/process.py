"""ProcessAdapter — drives one agent CLI subprocess for one task."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from typing import Any

from pydantic import TypeAdapter, ValidationError

from taskpilot.adapter import environment
from taskpilot.adapter.environment import (
    CliArgsBuilder,
    EnvironmentBuilder,
    format_stderr_preview,
    resolve_cli,
)
from taskpilot.adapter.events import (
    AdapterEvent,
    CompleteNotice,
    DebugEvent,
    ErrorNotice,
    MessagesEvent,
    PermissionRequestNotice,
    ProgressEvent,
    TodoUpdateEvent,
)
from taskpilot.completion.enforcer import CompletionEnforcer, StepFinishAction
from taskpilot.completion.state import CompletionPhase
from taskpilot.config.models import PilotConfig
from taskpilot.constants import (
    ASK_USER_QUESTION_TOOL,
    COMPLETE_TASK_TOOL,
    START_TASK_TOOL,
    TODO_WRITE_TOOL,
)
from taskpilot.messages.batcher import MessageBatcher
from taskpilot.messages.processor import to_task_message
from taskpilot.messages.tools import (
    get_model_display_name,
    get_tool_display_name,
    is_non_task_continuation_tool,
    matches_tool,
)
from taskpilot.models import (
    DebugLog,
    PermissionRequest,
    ProgressUpdate,
    TaskConfig,
    TaskMessage,
    TaskResult,
    TodoItem,
)
from taskpilot.stream.events import (
    CompleteEvent,
    ErrorEvent,
    PermissionRequestEvent,
    RawTextEvent,
    StepFinishEvent,
    StepStartEvent,
    StreamEvent,
    TextEvent,
    ToolCallEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from taskpilot.stream.parser import StreamParser

logger = logging.getLogger(__name__)

#: Bytes requested from stdout per read.
_READ_CHUNK = 65_536

#: Exit codes accepted as a clean stop after SIGINT.
_INTERRUPT_EXIT_CODES = frozenset({0, 130, -signal.SIGINT})

#: Seconds after ``step_start`` before a silent agent is reported as ``waiting``.
_WAITING_DELAY = 0.5

#: Characters of stderr kept in error messages.
_STDERR_DETAIL_CHARS = 2048

_TODO_LIST = TypeAdapter(list[TodoItem])


class CliNotFoundError(RuntimeError):
    """The agent CLI executable could not be located."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(
            f"Agent CLI '{command}' not found. "
            "Install it or set 'cli.command' in taskpilot.yaml."
        )


class AgentProcessError(RuntimeError):
    """The agent process failed outside of the agent's own reporting."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ProcessAdapter:
    """Own one agent subprocess (and its resume respawns) for one task.

    Everything the task produces is reported as an :data:`AdapterEvent` on
    :attr:`events`.  A ``complete`` or ``error`` event is always the last
    one; a cancelled adapter reports neither.
    """

    def __init__(
        self,
        task_id: str,
        settings: PilotConfig | None = None,
        *,
        build_cli_args: CliArgsBuilder | None = None,
        build_environment: EnvironmentBuilder | None = None,
    ) -> None:
        self.task_id = task_id
        self._settings = settings or PilotConfig()
        cli = self._settings.cli

        executable = resolve_cli(cli.command)
        if executable is None:
            raise CliNotFoundError(cli.command)
        self.executable = executable

        self._build_cli_args: CliArgsBuilder = build_cli_args or (
            lambda config: environment.build_cli_args(config, cli)
        )
        self._build_environment: EnvironmentBuilder = build_environment or (
            lambda task_id, config: environment.build_environment(task_id, config, cli)
        )

        self.events: asyncio.Queue[AdapterEvent] = asyncio.Queue()
        self.session_id: str | None = None

        self._parser = StreamParser(self._settings.max_line_bytes)
        self._batcher = MessageBatcher(self._emit_messages, self._settings.batch_delay_ms)
        self._enforcer = CompletionEnforcer(
            self._settings.max_continuation_attempts,
            on_debug=self._emit_debug,
        )

        # Subprocess state; replaced on every respawn.
        self._process: asyncio.subprocess.Process | None = None
        self._exit_code: int | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[str] | None = None

        self._config: TaskConfig | None = None
        self._started_at: float | None = None
        self._seen_tool_calls: set[str] = set()
        self._received_first_tool = False
        self._waiting_timer: asyncio.TimerHandle | None = None
        self._unanswered_continuation: str | None = None
        self._interrupted = False
        self._cancelling = False
        self._finished = False
        self._disposed = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self.is_running else None

    @property
    def is_running(self) -> bool:
        proc = self._process
        return proc is not None and self._exit_code is None and proc.returncode is None

    @property
    def is_finished(self) -> bool:
        """True once a terminal event has been emitted."""
        return self._finished

    @property
    def enforcer(self) -> CompletionEnforcer:
        return self._enforcer

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, config: TaskConfig) -> str | None:
        """Spawn the agent for *config* and begin reading its output.

        Returns the session id known at this point (the resume token, if any).

        Raises:
            RuntimeError: If the adapter was already started or disposed.
            OSError: If the process could not be spawned.
        """
        if self._config is not None or self._disposed:
            msg = f"Adapter for task {self.task_id} cannot be started twice"
            raise RuntimeError(msg)
        self._config = config
        self.session_id = config.session_id
        self._started_at = time.monotonic()
        await self._spawn(config)
        return self.session_id

    async def cancel(self) -> None:
        """Stop the agent: SIGTERM, grace period, SIGKILL.  Reports nothing."""
        self._cancelling = True
        await self._terminate_process()
        await self.dispose()

    async def interrupt(self) -> None:
        """Ask the agent to stop its current turn (SIGINT)."""
        proc = self._process
        if proc is None or not self.is_running:
            logger.warning("Task %s: interrupt requested with no running process", self.task_id)
            return
        self._interrupted = True
        with contextlib.suppress(ProcessLookupError):
            proc.send_signal(signal.SIGINT)

    async def send_response(self, text: str) -> None:
        """Write an operator reply to the agent's stdin."""
        proc = self._process
        if proc is None or not self.is_running or proc.stdin is None:
            msg = "No active process"
            raise RuntimeError(msg)
        proc.stdin.write((text + "\n").encode())
        await proc.stdin.drain()

    async def dispose(self) -> None:
        """Flush pending messages and release the process.  Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._batcher.close()
        self._cancel_waiting_timer()

        current = asyncio.current_task()
        for task in (self._read_task, self._stderr_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self.is_running:
            await self._terminate_process()

    # ------------------------------------------------------------------ #
    # Subprocess
    # ------------------------------------------------------------------ #

    async def _spawn(self, config: TaskConfig) -> None:
        argv = [self.executable, *self._build_cli_args(config)]
        env = self._build_environment(self.task_id, config)
        cwd = config.working_directory or self._settings.working_directory

        logger.info("Task %s: spawning %s", self.task_id, self.executable)
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            start_new_session=True,
        )
        self._process = proc
        self._exit_code = None
        self._parser.reset()
        self._stderr_task = asyncio.create_task(self._read_stderr(proc))
        self._read_task = asyncio.create_task(self._read_loop(proc))

    async def _read_loop(self, proc: asyncio.subprocess.Process) -> None:
        try:
            if proc.stdout is not None:
                while True:
                    chunk = await proc.stdout.read(_READ_CHUNK)
                    if not chunk:
                        break
                    for event in self._parser.feed(chunk):
                        await self._handle_event(event)
            for event in self._parser.flush():
                await self._handle_event(event)

            stderr_text = await self._stderr_task if self._stderr_task else ""
            returncode = await proc.wait()
            self._exit_code = returncode
            await self._handle_exit(returncode, stderr_text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Task %s: error handling agent output", self.task_id)
            self._fail(AgentProcessError(f"Error handling agent output: {exc}"))

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> str:
        if proc.stderr is None:
            return ""
        data = await proc.stderr.read()
        return data.decode(errors="replace").strip()

    async def _terminate_process(self) -> None:
        proc = self._process
        if proc is None or not self.is_running:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._settings.cancel_grace_seconds)
        except TimeoutError:
            logger.warning("Task %s: agent ignored SIGTERM, sending SIGKILL", self.task_id)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        self._exit_code = proc.returncode if proc.returncode is not None else -1

    async def _handle_exit(self, returncode: int, stderr_text: str) -> None:
        self._batcher.flush()
        if self._finished or self._cancelling or self._disposed:
            return

        if self._interrupted and returncode in _INTERRUPT_EXIT_CODES:
            self._complete(TaskResult(status="interrupted", session_id=self.session_id))
            return

        if returncode != 0:
            message = f"Agent exited with code {returncode}."
            preview = format_stderr_preview(stderr_text)
            if preview:
                message += f" Stderr:\n  {preview}"
            logger.error(
                "Task %s: agent exited with code %d: %s",
                self.task_id,
                returncode,
                stderr_text[:_STDERR_DETAIL_CHARS],
            )
            self._fail(AgentProcessError(message, returncode, stderr_text))
            return

        prompt = self._continuation_after_exit()
        if prompt is None:
            self._complete(self._enforcer.build_result(self.session_id))
            return
        if self.session_id is None:
            logger.warning("Task %s: cannot resume without a session id", self.task_id)
            self._complete(self._enforcer.build_result(self.session_id))
            return
        await self._respawn(prompt)

    def _continuation_after_exit(self) -> str | None:
        if self._enforcer.is_terminal:
            return None
        if self._unanswered_continuation is not None:
            prompt, self._unanswered_continuation = self._unanswered_continuation, None
            return prompt
        if not self._enforcer.continuation_pending:
            action = self._enforcer.handle_step_finish("stop")
            if action is not StepFinishAction.PENDING:
                return None
        return self._enforcer.take_continuation_prompt()

    async def _respawn(self, prompt: str) -> None:
        if self._config is None:
            msg = f"Adapter for task {self.task_id} was never started"
            raise RuntimeError(msg)
        config = self._config.model_copy(update={"prompt": prompt, "session_id": self.session_id})
        self._emit_debug(
            "continuation",
            f"Resuming session {self.session_id} with a continuation prompt",
            {"attempt": self._enforcer.continuation_attempts},
        )
        try:
            await self._spawn(config)
        except OSError as exc:
            logger.error("Task %s: failed to respawn agent: %s", self.task_id, exc)
            self._fail(AgentProcessError(f"Failed to resume agent session: {exc}"))
        except Exception as exc:
            # Injected argument/environment builders may raise anything.
            logger.exception("Task %s: failed to build resume invocation", self.task_id)
            self._fail(AgentProcessError(f"Failed to resume agent session: {exc}"))

    # ------------------------------------------------------------------ #
    # Stream events
    # ------------------------------------------------------------------ #

    async def _handle_event(self, event: StreamEvent) -> None:
        if self._finished:
            logger.debug("Task %s: ignoring %s after completion", self.task_id, event.type)
            return

        reported = event.reported_session_id
        if reported and reported != self.session_id:
            self.session_id = reported

        if not isinstance(event, RawTextEvent):
            self._unanswered_continuation = None

        match event:
            case RawTextEvent():
                self._emit_debug(
                    "raw_output",
                    event.text,
                    {"truncated": event.truncated} if event.truncated else None,
                )

            case TextEvent():
                self._add_message(to_task_message(event))

            case ToolCallEvent():
                self._add_message(to_task_message(event))
                self._on_tool(event.part.tool, event.part.input)

            case ToolUseEvent():
                self._on_tool_use(event)

            case ToolResultEvent():
                self._add_message(to_task_message(event))

            case StepStartEvent():
                self._on_step_start()

            case StepFinishEvent():
                await self._on_step_finish(event.part.reason)

            case PermissionRequestEvent():
                self._forward_permission_request(event.part)

            case CompleteEvent():
                self._on_agent_complete(event)

            case ErrorEvent():
                self._complete(
                    TaskResult(status="error", session_id=self.session_id, error=event.message)
                )

    def _on_tool_use(self, event: ToolUseEvent) -> None:
        part = event.part
        if part.state.status == "pending":
            # Input is not final until the call is running.
            return
        extra = part.model_extra or {}
        key = extra.get("callID") or extra.get("id")
        first_sighting = key is None or key not in self._seen_tool_calls
        if key is not None:
            self._seen_tool_calls.add(key)

        if first_sighting:
            label = get_tool_display_name(part.tool)
            if label is not None:
                self._add_message(
                    TaskMessage(
                        type="tool",
                        content=f"Using tool: {label}",
                        tool_name=part.tool,
                        tool_input=part.state.input,
                    )
                )
            self._on_tool(part.tool, part.state.input)
        elif event.is_finished and matches_tool(part.tool, TODO_WRITE_TOOL):
            self._update_todos(part.state.input)

        self._add_message(to_task_message(event))

    def _on_tool(self, tool: str, tool_input: Any) -> None:
        self._received_first_tool = True
        self._cancel_waiting_timer()
        self._enforcer.mark_tools_used(not is_non_task_continuation_tool(tool))

        if matches_tool(tool, START_TASK_TOOL):
            self._enforcer.mark_task_requires_completion()
        elif matches_tool(tool, TODO_WRITE_TOOL):
            self._update_todos(tool_input)
        elif matches_tool(tool, COMPLETE_TASK_TOOL):
            if self._enforcer.handle_complete_task(tool_input) and isinstance(tool_input, dict):
                summary = tool_input.get("summary")
                if isinstance(summary, str) and summary.strip():
                    self._add_message(TaskMessage(type="assistant", content=summary.strip()))
        elif matches_tool(tool, ASK_USER_QUESTION_TOOL):
            self._ask_user_question(tool_input)

        label = get_tool_display_name(tool)
        if label is not None:
            self._emit_progress(ProgressUpdate(stage="tool-use", message=label))

    def _ask_user_question(self, tool_input: Any) -> None:
        """Surface the agent's first question as a ``question`` permission request."""
        questions = tool_input.get("questions") if isinstance(tool_input, dict) else None
        if not isinstance(questions, list) or not questions or not isinstance(questions[0], dict):
            logger.warning("Task %s: question tool called without a question", self.task_id)
            return
        question = questions[0]
        options = [
            {"label": option.get("label"), "description": option.get("description")}
            for option in question.get("options") or []
            if isinstance(option, dict)
        ]
        self._batcher.flush()
        request = PermissionRequest(
            task_id=self.task_id,
            type="question",
            question=question.get("question"),
            options=options,
            multi_select=bool(question.get("multiSelect", False)),
        )
        self._emit(PermissionRequestNotice(request=request))

    def _forward_permission_request(self, part: dict[str, Any]) -> None:
        self._batcher.flush()
        fields = {**part, "task_id": self.task_id}
        try:
            request = PermissionRequest.model_validate(fields)
        except ValidationError as exc:
            # Forwarded as sent even when the agent's fields have unexpected types.
            logger.warning(
                "Task %s: permission request with unexpected fields: %s", self.task_id, exc
            )
            request = PermissionRequest.model_construct(**fields)
        self._emit(PermissionRequestNotice(request=request))

    def _on_step_start(self) -> None:
        model_name = get_model_display_name(self._config.model_id if self._config else None)
        self._emit_progress(
            ProgressUpdate(
                stage="connecting",
                message=f"Connecting to {model_name}...",
                model_name=model_name,
            )
        )
        self._cancel_waiting_timer()
        if not self._received_first_tool:
            loop = asyncio.get_running_loop()
            self._waiting_timer = loop.call_later(_WAITING_DELAY, self._on_waiting_timeout)

    def _on_waiting_timeout(self) -> None:
        self._waiting_timer = None
        if not self._received_first_tool and not self._finished and not self._disposed:
            self._emit_progress(ProgressUpdate(stage="waiting", message="Waiting for response..."))

    def _cancel_waiting_timer(self) -> None:
        if self._waiting_timer is not None:
            self._waiting_timer.cancel()
            self._waiting_timer = None

    def _update_todos(self, tool_input: Any) -> None:
        if not isinstance(tool_input, dict) or "todos" not in tool_input:
            return
        try:
            todos = _TODO_LIST.validate_python(tool_input["todos"])
        except ValidationError as exc:
            logger.warning("Task %s: ignoring malformed todo list: %s", self.task_id, exc)
            return
        self._enforcer.update_todos(todos)
        self._batcher.flush()
        self._emit(TodoUpdateEvent(todos=todos))

    async def _on_step_finish(self, reason: str) -> None:
        if reason == "error":
            self._complete(
                TaskResult(
                    status="error",
                    session_id=self.session_id,
                    error="Agent step finished with an error",
                )
            )
            return

        match self._enforcer.handle_step_finish(reason):
            case StepFinishAction.CONTINUE:
                return
            case StepFinishAction.COMPLETE:
                self._complete(self._enforcer.build_result(self.session_id))
            case StepFinishAction.PENDING:
                await self._deliver_continuation()

    async def _deliver_continuation(self) -> None:
        proc = self._process
        if proc is None or not self.is_running or proc.stdin is None:
            # Delivered by a resume respawn once the process exits.
            return
        prompt = self._enforcer.take_continuation_prompt()
        if prompt is None:
            return
        self._unanswered_continuation = prompt
        try:
            proc.stdin.write((prompt + "\n").encode())
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, OSError) as exc:
            logger.debug("Task %s: continuation not written to stdin: %s", self.task_id, exc)

    def _on_agent_complete(self, event: CompleteEvent) -> None:
        part = event.part
        if part.status == "success" and self._enforcer.phase is CompletionPhase.SIGNALED:
            result = self._enforcer.build_result(self.session_id)
        else:
            result = TaskResult(status=part.status, session_id=self.session_id, error=part.error)
        self._complete(result)

    # ------------------------------------------------------------------ #
    # Outward events
    # ------------------------------------------------------------------ #

    def _emit(self, event: AdapterEvent) -> None:
        self.events.put_nowait(event)

    def _emit_messages(self, messages: list[TaskMessage]) -> None:
        self._emit(MessagesEvent(messages=messages))

    def _emit_progress(self, progress: ProgressUpdate) -> None:
        self._emit(ProgressEvent(progress=progress))

    def _emit_debug(self, kind: str, message: str, data: Any = None) -> None:
        self._emit(DebugEvent(log=DebugLog(type=kind, message=message, data=data)))

    def _add_message(self, message: TaskMessage | None) -> None:
        if message is not None:
            self._batcher.add(message)

    def _complete(self, result: TaskResult) -> None:
        if self._finished:
            return
        self._cancel_waiting_timer()
        self._batcher.flush()
        self._finished = True
        if self._started_at is not None and result.duration_ms is None:
            result.duration_ms = int((time.monotonic() - self._started_at) * 1000)
        logger.info("Task %s: complete with status %s", self.task_id, result.status)
        self._emit(CompleteNotice(result=result))

    def _fail(self, error: Exception) -> None:
        if self._finished:
            return
        self._cancel_waiting_timer()
        self._batcher.flush()
        self._finished = True
        self._emit(ErrorNotice(error=error))
