"""Tool classification — which tools are hidden and which count as task work."""

from __future__ import annotations

import re

from taskpilot.constants import (
    ASK_USER_QUESTION_TOOL,
    COMPLETE_TASK_TOOL,
    START_TASK_TOOL,
    TODO_WRITE_TOOL,
)

#: Internal context-management tools never surfaced to the user.
HIDDEN_TOOLS = ("discard", "extract", "context_info", "prune", "distill")

#: Tools whose use does not mean the agent started real task work.
NON_TASK_CONTINUATION_TOOLS = (
    *HIDDEN_TOOLS,
    TODO_WRITE_TOOL,
    COMPLETE_TASK_TOOL,
    START_TASK_TOOL,
    "skill",
    ASK_USER_QUESTION_TOOL,
    "report_checkpoint",
    "report_thought",
    "request_file_permission",
)

#: Human-readable labels for well-known tools.
TOOL_DISPLAY_NAMES: dict[str, str] = {
    "browser_evaluate": "Evaluating page",
    "browser_snapshot": "Taking screenshot",
    "browser_canvas_type": "Typing text",
    "browser_script": "Running script",
    "browser_click": "Clicking element",
    "browser_keyboard": "Typing",
}

#: Label used when a task has no model configured.
DEFAULT_MODEL_DISPLAY_NAME = "AI"

_DATE_SUFFIX_RE = re.compile(r"-\d{8}$")


def matches_tool(tool_name: str, base_name: str) -> bool:
    """True if *tool_name* is *base_name* or an MCP-prefixed ``*_base_name``."""
    return tool_name == base_name or tool_name.endswith(f"_{base_name}")


def is_hidden_tool(tool_name: str) -> bool:
    return any(matches_tool(tool_name, t) for t in HIDDEN_TOOLS)


def is_non_task_continuation_tool(tool_name: str) -> bool:
    return any(matches_tool(tool_name, t) for t in NON_TASK_CONTINUATION_TOOLS)


def get_tool_display_name(tool_name: str) -> str | None:
    """Return the label to show for *tool_name*, or ``None`` if it is hidden.

    Unknown tools are shown under their own identifier.
    """
    if is_hidden_tool(tool_name):
        return None
    return TOOL_DISPLAY_NAMES.get(tool_name, tool_name)


def get_model_display_name(model_id: str | None) -> str:
    """Short model name for progress messages.

    Drops the provider prefix and any trailing ``-YYYYMMDD`` release date,
    so ``anthropic/claude-sonnet-4-20250514`` becomes ``claude-sonnet-4``.
    """
    if not model_id:
        return DEFAULT_MODEL_DISPLAY_NAME
    name = _DATE_SUFFIX_RE.sub("", model_id.rsplit("/", 1)[-1])
    return name or DEFAULT_MODEL_DISPLAY_NAME
