"""Process adapter — one agent CLI subprocess per task."""

from taskpilot.adapter.environment import (
    build_cli_args,
    build_environment,
    is_cli_available,
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
from taskpilot.adapter.process import AgentProcessError, CliNotFoundError, ProcessAdapter

__all__ = [
    "AdapterEvent",
    "AgentProcessError",
    "CliNotFoundError",
    "CompleteNotice",
    "DebugEvent",
    "ErrorNotice",
    "MessagesEvent",
    "PermissionRequestNotice",
    "ProcessAdapter",
    "ProgressEvent",
    "TodoUpdateEvent",
    "build_cli_args",
    "build_environment",
    "is_cli_available",
    "resolve_cli",
]
