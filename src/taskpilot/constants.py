"""Shared constants and type aliases for taskpilot."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

#: Identifier of the tool the agent must call to declare a task's outcome.
COMPLETE_TASK_TOOL = "complete_task"

#: Identifier of the agent's todo-list tool.
TODO_WRITE_TOOL = "todowrite"

#: Identifier of the planning tool the agent calls first.
START_TASK_TOOL = "start_task"

#: Identifier of the tool the agent uses to ask the operator a question.
ASK_USER_QUESTION_TOOL = "AskUserQuestion"

#: Statuses the agent may pass to the completion tool.
COMPLETION_STATUSES = ("success", "blocked", "partial")

#: Environment variable carrying the task id into the agent process.
TASK_ID_ENV = "TASKPILOT_TASK_ID"

#: Callback invoked by the manager; may return an awaitable.
TaskCallback = Callable[..., Awaitable[None] | None]
