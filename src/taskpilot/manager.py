"""TaskManager — admission, queueing, and per-task event delivery."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from taskpilot.adapter import environment
from taskpilot.adapter.environment import CliArgsBuilder, EnvironmentBuilder
from taskpilot.adapter.events import (
    TERMINAL_KINDS,
    AdapterEvent,
    CompleteNotice,
    DebugEvent,
    ErrorNotice,
    MessagesEvent,
    PermissionRequestNotice,
    ProgressEvent,
    TodoUpdateEvent,
)
from taskpilot.adapter.process import CliNotFoundError, ProcessAdapter
from taskpilot.config.models import PilotConfig
from taskpilot.constants import TaskCallback
from taskpilot.models import (
    RESULT_TO_TASK_STATUS,
    ProgressUpdate,
    Task,
    TaskConfig,
    TaskStatus,
    iso_now,
)

logger = logging.getLogger(__name__)


class TaskAdmissionError(Exception):
    """A task could not be admitted."""


class DuplicateTaskError(TaskAdmissionError):
    """The task id is already running or queued."""


class QueueFullError(TaskAdmissionError):
    """Every slot is busy and the wait queue is full."""


class TaskNotActiveError(Exception):
    """The task is not running (unknown, queued, or already finished)."""


@runtime_checkable
class TaskAdapter(Protocol):
    """What the manager needs from a per-task process adapter."""

    events: asyncio.Queue[AdapterEvent]
    session_id: str | None

    async def start(self, config: TaskConfig) -> str | None: ...

    async def cancel(self) -> None: ...

    async def interrupt(self) -> None: ...

    async def send_response(self, text: str) -> None: ...

    async def dispose(self) -> None: ...


AdapterFactory = Callable[[str], TaskAdapter]
CliProbe = Callable[[], bool | Awaitable[bool]]
BeforeStartHook = Callable[[str, TaskConfig], Awaitable[None] | None]


@dataclass
class TaskCallbacks:
    """Per-task observers.  Each may be a plain function or a coroutine function."""

    on_message: TaskCallback | None = None
    on_progress: TaskCallback | None = None
    on_permission_request: TaskCallback | None = None
    on_complete: TaskCallback | None = None
    on_error: TaskCallback | None = None
    on_status_change: TaskCallback | None = None
    on_debug: TaskCallback | None = None
    on_todo_update: TaskCallback | None = None


@dataclass
class QueueEntry:
    task_id: str
    config: TaskConfig
    callbacks: TaskCallbacks
    enqueued_at: str = field(default_factory=iso_now)


@dataclass
class ActiveTaskHandle:
    task_id: str
    adapter: TaskAdapter
    callbacks: TaskCallbacks
    task: Task
    runner: asyncio.Task[None] | None = None
    cancelled: bool = False


class TaskManager:
    """Run agent tasks with bounded concurrency and a bounded FIFO queue.

    At most ``max_concurrent_tasks`` adapters are active at once; further
    tasks wait in order, up to ``max_queue_length``.  Whenever a slot frees
    up the oldest waiting task is started through the same path as a fresh
    one.  Every active task has one runner coroutine that consumes its
    adapter's events and invokes the task's callbacks in order.
    """

    def __init__(
        self,
        settings: PilotConfig | None = None,
        *,
        is_cli_available: CliProbe | None = None,
        build_environment: EnvironmentBuilder | None = None,
        build_cli_args: CliArgsBuilder | None = None,
        adapter_factory: AdapterFactory | None = None,
        on_before_task_start: BeforeStartHook | None = None,
    ) -> None:
        self._settings = settings or PilotConfig()
        self._max_concurrent = self._settings.max_concurrent_tasks
        self._max_queue = (
            self._settings.max_queue_length
            if self._settings.max_queue_length is not None
            else self._max_concurrent
        )

        cli = self._settings.cli
        self._is_cli_available: CliProbe = is_cli_available or (
            lambda: environment.is_cli_available(cli)
        )
        self._adapter_factory: AdapterFactory = adapter_factory or (
            lambda task_id: ProcessAdapter(
                task_id,
                self._settings,
                build_cli_args=build_cli_args,
                build_environment=build_environment,
            )
        )
        self._on_before_task_start = on_before_task_start

        self._lock = asyncio.Lock()
        self._active: dict[str, ActiveTaskHandle] = {}
        self._queue: deque[QueueEntry] = deque()
        self._tasks: dict[str, Task] = {}
        self._has_started_task = False
        self._disposed = False

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    async def start_task(
        self,
        task_id: str,
        config: TaskConfig,
        callbacks: TaskCallbacks | None = None,
    ) -> Task:
        """Start *task_id* now, or queue it if every slot is busy.

        Returns a snapshot of the task with status ``running`` or ``queued``.

        Raises:
            CliNotFoundError: The agent CLI is not available.
            DuplicateTaskError: The id is already running or queued.
            QueueFullError: No free slot and the queue is full.
        """
        if self._disposed:
            msg = "TaskManager has been disposed"
            raise RuntimeError(msg)
        callbacks = callbacks or TaskCallbacks()

        if not await _maybe_await(self._is_cli_available()):
            raise CliNotFoundError(self._settings.cli.command)

        async with self._lock:
            if task_id in self._active or self._find_queued(task_id) is not None:
                msg = f"Task {task_id} is already running or queued"
                raise DuplicateTaskError(msg)

            if len(self._active) < self._max_concurrent:
                handle = self._activate(task_id, config, callbacks, promoted=False)
                return handle.task.model_copy(deep=True)

            if len(self._queue) >= self._max_queue:
                msg = (
                    f"Task queue is full ({self._max_queue} waiting, "
                    f"{self._max_concurrent} running)"
                )
                raise QueueFullError(msg)

            self._queue.append(QueueEntry(task_id, config, callbacks))
            task = Task(id=task_id, prompt=config.prompt, status="queued")
            self._tasks[task_id] = task
            logger.info(
                "Task %s queued at position %d", task_id, len(self._queue)
            )
            return task.model_copy(deep=True)

    async def cancel_task(self, task_id: str) -> None:
        """Cancel a running or queued task.  Unknown ids are ignored."""
        failures: list[tuple[QueueEntry, Exception]] = []
        async with self._lock:
            handle = self._active.pop(task_id, None)
            if handle is not None:
                handle.cancelled = True
                self._finish_task(task_id, "cancelled")
                failures = self._promote_locked()
                callbacks = handle.callbacks
            else:
                entry = self._find_queued(task_id)
                if entry is None:
                    logger.warning("Cancel requested for unknown task %s", task_id)
                    return
                self._queue.remove(entry)
                self._finish_task(task_id, "cancelled")
                callbacks = entry.callbacks

        logger.info("Task %s cancelled", task_id)
        if handle is not None:
            await self._stop_runner(handle)
            await handle.adapter.cancel()
        await self._call(task_id, callbacks, "on_status_change", "cancelled")
        await self._report_promotion_failures(failures)

    async def interrupt_task(self, task_id: str) -> None:
        """Ask a running task's agent to stop its current turn."""
        handle = self._active.get(task_id)
        if handle is None:
            logger.warning("Interrupt requested for inactive task %s", task_id)
            return
        await handle.adapter.interrupt()

    async def send_response(self, task_id: str, text: str) -> None:
        """Forward operator text to a running task's agent."""
        handle = self._active.get(task_id)
        if handle is None:
            msg = f"Task {task_id} not found or not active"
            raise TaskNotActiveError(msg)
        await handle.adapter.send_response(text)

    async def dispose(self) -> None:
        """Cancel every active task and drop the queue.  Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        async with self._lock:
            handles = list(self._active.values())
            self._active.clear()
            self._queue.clear()
            self._tasks.clear()

        for handle in handles:
            handle.cancelled = True
            await self._stop_runner(handle)
        results = await asyncio.gather(
            *(handle.adapter.cancel() for handle in handles),
            return_exceptions=True,
        )
        for handle, result in zip(handles, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Task %s: error during dispose: %s", handle.task_id, result)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_session_id(self, task_id: str) -> str | None:
        handle = self._active.get(task_id)
        if handle is not None:
            return handle.adapter.session_id or handle.task.session_id
        task = self._tasks.get(task_id)
        return task.session_id if task is not None else None

    def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    def get_active_task_count(self) -> int:
        return len(self._active)

    def get_active_task_ids(self) -> list[str]:
        return list(self._active)

    def get_queue_length(self) -> int:
        return len(self._queue)

    def get_queue_position(self, task_id: str) -> int:
        """1-based position in the wait queue, 0 if not queued."""
        for index, entry in enumerate(self._queue, start=1):
            if entry.task_id == task_id:
                return index
        return 0

    def has_active_task(self, task_id: str) -> bool:
        return task_id in self._active

    def has_running_task(self) -> bool:
        return bool(self._active)

    def is_task_queued(self, task_id: str) -> bool:
        return self._find_queued(task_id) is not None

    @property
    def is_first_task(self) -> bool:
        """True until the first task has been started."""
        return not self._has_started_task

    # ------------------------------------------------------------------ #
    # Admission internals (called with the lock held)
    # ------------------------------------------------------------------ #

    def _find_queued(self, task_id: str) -> QueueEntry | None:
        return next((e for e in self._queue if e.task_id == task_id), None)

    def _activate(
        self,
        task_id: str,
        config: TaskConfig,
        callbacks: TaskCallbacks,
        *,
        promoted: bool,
    ) -> ActiveTaskHandle:
        adapter = self._adapter_factory(task_id)

        task = self._tasks.get(task_id) or Task(id=task_id, prompt=config.prompt, status="running")
        task.status = "running"
        task.started_at = iso_now()
        task.session_id = config.session_id
        self._tasks[task_id] = task

        handle = ActiveTaskHandle(task_id, adapter, callbacks, task)
        self._active[task_id] = handle
        is_first = not self._has_started_task
        self._has_started_task = True
        handle.runner = asyncio.create_task(
            self._run(handle, config, promoted=promoted, is_first=is_first),
            name=f"taskpilot-{task_id}",
        )
        logger.info("Task %s started (%d active)", task_id, len(self._active))
        return handle

    def _promote_locked(self) -> list[tuple[QueueEntry, Exception]]:
        failures: list[tuple[QueueEntry, Exception]] = []
        while self._queue and len(self._active) < self._max_concurrent:
            entry = self._queue.popleft()
            try:
                self._activate(entry.task_id, entry.config, entry.callbacks, promoted=True)
            except Exception as exc:
                logger.error("Task %s: failed to start from queue: %s", entry.task_id, exc)
                self._finish_task(entry.task_id, "failed")
                failures.append((entry, exc))
        return failures

    def _finish_task(self, task_id: str, status: TaskStatus) -> Task | None:
        task = self._tasks.pop(task_id, None)
        if task is not None:
            task.status = status
            task.completed_at = iso_now()
        return task

    # ------------------------------------------------------------------ #
    # Runner
    # ------------------------------------------------------------------ #

    async def _run(
        self,
        handle: ActiveTaskHandle,
        config: TaskConfig,
        *,
        promoted: bool,
        is_first: bool,
    ) -> None:
        task_id = handle.task_id
        try:
            if promoted:
                await self._call(task_id, handle.callbacks, "on_status_change", "running")
            await self._call(
                task_id,
                handle.callbacks,
                "on_progress",
                ProgressUpdate(stage="starting", message="Starting task", is_first_task=is_first),
            )
            if self._on_before_task_start is not None:
                await self._call(
                    task_id,
                    handle.callbacks,
                    "on_progress",
                    ProgressUpdate(stage="environment", message="Preparing environment"),
                )
                await _maybe_await(self._on_before_task_start(task_id, config))

            session_id = await handle.adapter.start(config)
            if session_id:
                handle.task.session_id = session_id

            while not handle.cancelled:
                event = await handle.adapter.events.get()
                await self._dispatch(handle, event)
                if event.kind in TERMINAL_KINDS:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Task %s failed: %s", task_id, exc)
            if not handle.cancelled:
                await self._report_failure(handle, exc)

        if not handle.cancelled:
            await self._release(handle)

    async def _dispatch(self, handle: ActiveTaskHandle, event: AdapterEvent) -> None:
        task_id = handle.task_id
        callbacks = handle.callbacks
        if handle.adapter.session_id:
            handle.task.session_id = handle.adapter.session_id

        match event:
            case MessagesEvent():
                handle.task.messages.extend(event.messages)
                await self._call(task_id, callbacks, "on_message", event.messages)
            case ProgressEvent():
                await self._call(task_id, callbacks, "on_progress", event.progress)
            case PermissionRequestNotice():
                await self._call(task_id, callbacks, "on_permission_request", event.request)
            case TodoUpdateEvent():
                await self._call(task_id, callbacks, "on_todo_update", event.todos)
            case DebugEvent():
                await self._call(task_id, callbacks, "on_debug", event.log)
            case CompleteNotice():
                result = event.result
                if result.session_id is None:
                    result.session_id = handle.task.session_id
                status = RESULT_TO_TASK_STATUS[result.status]
                handle.task.result = result
                handle.task.status = status
                handle.task.completed_at = iso_now()
                await self._call(task_id, callbacks, "on_status_change", status)
                await self._call(task_id, callbacks, "on_complete", result)
            case ErrorNotice():
                await self._report_failure(handle, event.error)

    async def _report_failure(self, handle: ActiveTaskHandle, error: Exception) -> None:
        handle.task.status = "failed"
        handle.task.completed_at = iso_now()
        await self._call(handle.task_id, handle.callbacks, "on_status_change", "failed")
        await self._call(handle.task_id, handle.callbacks, "on_error", error)

    async def _release(self, handle: ActiveTaskHandle) -> None:
        """Free *handle*'s slot, dispose its adapter, and promote the queue."""
        failures: list[tuple[QueueEntry, Exception]] = []
        async with self._lock:
            if self._active.get(handle.task_id) is handle:
                del self._active[handle.task_id]
                self._tasks.pop(handle.task_id, None)
                failures = self._promote_locked()
        try:
            await handle.adapter.dispose()
        except Exception:
            logger.exception("Task %s: error disposing adapter", handle.task_id)
        await self._report_promotion_failures(failures)

    async def _report_promotion_failures(
        self, failures: list[tuple[QueueEntry, Exception]]
    ) -> None:
        for entry, exc in failures:
            await self._call(entry.task_id, entry.callbacks, "on_status_change", "failed")
            await self._call(entry.task_id, entry.callbacks, "on_error", exc)

    async def _stop_runner(self, handle: ActiveTaskHandle) -> None:
        runner = handle.runner
        if runner is None or runner.done() or runner is asyncio.current_task():
            return
        runner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await runner

    async def _call(
        self,
        task_id: str,
        callbacks: TaskCallbacks,
        name: str,
        *args: object,
    ) -> None:
        """Invoke one callback; failures are logged and never propagate."""
        callback = getattr(callbacks, name)
        if callback is None:
            return
        try:
            await _maybe_await(callback(*args))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Task %s: %s callback raised", task_id, name)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
