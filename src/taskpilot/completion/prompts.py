"""Continuation prompts injected when the agent stops without a verdict."""

from __future__ import annotations

from taskpilot.constants import COMPLETE_TASK_TOOL, TODO_WRITE_TOOL

_CONTINUATION_PROMPT = f"""\
REMINDER: You must call {COMPLETE_TASK_TOOL} when you are finished.

First ask yourself: "Have I actually done everything the user asked?"

- If NO, keep working on the task.
- If YES, call {COMPLETE_TASK_TOOL} with status "success".
- If you are stuck on a real blocker, call {COMPLETE_TASK_TOOL} with status "blocked".
- If only some parts are done and the rest cannot be done, call \
{COMPLETE_TASK_TOOL} with status "partial" and describe the remaining work.

Do not stop again without calling {COMPLETE_TASK_TOOL}."""

_OPEN_TODOS_PROMPT = """\
You stopped without calling {tool}, and these todo items are still open:

{todos}

Finish them, then mark each one "completed" or "cancelled" with {todo_tool} \
and call {tool}."""


def get_continuation_prompt(open_todos: str | None = None) -> str:
    """Return the prompt asking the agent to keep working or call the completion tool.

    When *open_todos* is given the prompt lists them instead of the generic reminder.
    """
    if open_todos:
        return _OPEN_TODOS_PROMPT.format(
            tool=COMPLETE_TASK_TOOL,
            todo_tool=TODO_WRITE_TOOL,
            todos=open_todos,
        )
    return _CONTINUATION_PROMPT
