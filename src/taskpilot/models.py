"""Pydantic v2 models for tasks, messages, and results."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TaskStatus = Literal[
    "queued",
    "running",
    "completed",
    "failed",
    "cancelled",
    "interrupted",
]

ResultStatus = Literal[
    "success",
    "blocked",
    "partial",
    "error",
    "interrupted",
    "cancelled",
]

#: Terminal task status for each result status.
RESULT_TO_TASK_STATUS: dict[str, TaskStatus] = {
    "success": "completed",
    "blocked": "completed",
    "partial": "completed",
    "error": "failed",
    "interrupted": "interrupted",
    "cancelled": "cancelled",
}


def iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def new_id(prefix: str) -> str:
    """Return a short unique identifier such as ``msg_3f2a9c1b4d5e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class TaskConfig(BaseModel):
    """Per-task configuration supplied by the caller."""

    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(description="Free-text task description")
    working_directory: str | None = Field(
        default=None,
        description="Directory the agent runs in (manager default when unset)",
    )
    session_id: str | None = Field(
        default=None,
        description="Session to resume instead of starting a new one",
    )
    model_id: str | None = Field(
        default=None,
        description="Model identifier passed through to the agent CLI",
    )
    system_prompt_append: str | None = Field(
        default=None,
        description="Extra instructions appended to the agent system prompt",
    )


class TaskAttachment(BaseModel):
    """Binary or structured payload extracted from tool output."""

    type: Literal["screenshot", "json"]
    data: str
    label: str | None = None


class TaskMessage(BaseModel):
    """A user-visible message produced while a task runs."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    type: Literal["assistant", "user", "tool", "system"]
    content: str
    tool_name: str | None = None
    tool_input: Any = None
    timestamp: str = Field(default_factory=iso_now)
    attachments: list[TaskAttachment] | None = None


class TaskResult(BaseModel):
    """Terminal outcome of a task."""

    status: ResultStatus
    session_id: str | None = None
    summary: str | None = None
    remaining_work: str | None = None
    error: str | None = None
    forced: bool = Field(
        default=False,
        description="True when the verdict was assigned without a completion call",
    )
    duration_ms: int | None = None


class TodoItem(BaseModel):
    """A todo entry surfaced by the agent."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    content: str
    status: Literal["pending", "in_progress", "completed", "cancelled"] = "pending"
    priority: Literal["high", "medium", "low"] = "medium"

    @property
    def is_open(self) -> bool:
        return self.status in ("pending", "in_progress")


class PermissionRequest(BaseModel):
    """Out-of-band approval the agent is blocked on.

    Only the identifying fields are typed; everything else the agent sends
    is kept verbatim and forwarded unmodified.
    """

    model_config = ConfigDict(extra="allow")

    id: str | int = Field(default_factory=lambda: new_id("req"))
    task_id: str = ""
    type: str = "tool"
    created_at: str = Field(default_factory=iso_now)


class ProgressUpdate(BaseModel):
    """Lifecycle or stage marker for a running task."""

    stage: str
    message: str | None = None
    model_name: str | None = None
    is_first_task: bool | None = None


class DebugLog(BaseModel):
    """Diagnostic record forwarded to ``on_debug``."""

    type: str
    message: str
    data: Any = None


class Task(BaseModel):
    """One unit of delegated work, tracked from submission to a terminal status."""

    id: str
    prompt: str
    status: TaskStatus
    session_id: str | None = None
    messages: list[TaskMessage] = Field(default_factory=list)
    created_at: str = Field(default_factory=iso_now)
    started_at: str | None = None
    completed_at: str | None = None
    result: TaskResult | None = None
