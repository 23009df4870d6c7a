"""Pydantic v2 models for events an adapter reports to its task manager."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from taskpilot.models import (
    DebugLog,
    PermissionRequest,
    ProgressUpdate,
    TaskMessage,
    TaskResult,
    TodoItem,
)


class _AdapterEventBase(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class MessagesEvent(_AdapterEventBase):
    """A batch of user-visible messages."""

    kind: Literal["messages"] = "messages"
    messages: list[TaskMessage]


class ProgressEvent(_AdapterEventBase):
    kind: Literal["progress"] = "progress"
    progress: ProgressUpdate


class PermissionRequestNotice(_AdapterEventBase):
    kind: Literal["permission_request"] = "permission_request"
    request: PermissionRequest


class TodoUpdateEvent(_AdapterEventBase):
    kind: Literal["todo_update"] = "todo_update"
    todos: list[TodoItem]


class DebugEvent(_AdapterEventBase):
    kind: Literal["debug"] = "debug"
    log: DebugLog


class CompleteNotice(_AdapterEventBase):
    """Terminal: the task ended with a verdict."""

    kind: Literal["complete"] = "complete"
    result: TaskResult


class ErrorNotice(_AdapterEventBase):
    """Terminal: the task failed outside the agent's control."""

    kind: Literal["error"] = "error"
    error: Exception = Field(description="The failure surfaced to on_error")


def _kind_discriminator(v: Any) -> str:
    if isinstance(v, dict):
        return str(v.get("kind", ""))
    return str(getattr(v, "kind", ""))


AdapterEvent = Annotated[
    Annotated[MessagesEvent, Tag("messages")]
    | Annotated[ProgressEvent, Tag("progress")]
    | Annotated[PermissionRequestNotice, Tag("permission_request")]
    | Annotated[TodoUpdateEvent, Tag("todo_update")]
    | Annotated[DebugEvent, Tag("debug")]
    | Annotated[CompleteNotice, Tag("complete")]
    | Annotated[ErrorNotice, Tag("error")],
    Discriminator(_kind_discriminator),
]
"""Discriminated union of everything an adapter puts on its event queue."""

#: Event kinds after which the adapter emits nothing further.
TERMINAL_KINDS = frozenset({"complete", "error"})
