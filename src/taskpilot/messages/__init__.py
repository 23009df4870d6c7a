"""Message processing — sanitizers, tool classification, and batching."""

from taskpilot.messages.batcher import MessageBatcher
from taskpilot.messages.processor import (
    extract_screenshots,
    sanitize_assistant_text,
    sanitize_tool_output,
    to_task_message,
)
from taskpilot.messages.tools import (
    get_tool_display_name,
    is_hidden_tool,
    is_non_task_continuation_tool,
)

__all__ = [
    "MessageBatcher",
    "extract_screenshots",
    "get_tool_display_name",
    "is_hidden_tool",
    "is_non_task_continuation_tool",
    "sanitize_assistant_text",
    "sanitize_tool_output",
    "to_task_message",
]
