"""taskpilot — task orchestration and streaming for coding-agent CLIs."""

__version__ = "0.1.0"

from taskpilot.adapter.process import CliNotFoundError, ProcessAdapter
from taskpilot.config import CliConfig, ConfigError, PilotConfig, load_config
from taskpilot.manager import (
    DuplicateTaskError,
    QueueFullError,
    TaskAdmissionError,
    TaskCallbacks,
    TaskManager,
    TaskNotActiveError,
)
from taskpilot.models import Task, TaskConfig, TaskMessage, TaskResult

__all__ = [
    "CliConfig",
    "CliNotFoundError",
    "ConfigError",
    "DuplicateTaskError",
    "PilotConfig",
    "ProcessAdapter",
    "QueueFullError",
    "Task",
    "TaskAdmissionError",
    "TaskCallbacks",
    "TaskConfig",
    "TaskManager",
    "TaskMessage",
    "TaskNotActiveError",
    "TaskResult",
    "__version__",
    "load_config",
]
