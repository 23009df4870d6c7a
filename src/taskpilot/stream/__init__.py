"""Stream parsing — NDJSON event models and the incremental parser."""

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

__all__ = [
    "CompleteEvent",
    "ErrorEvent",
    "PermissionRequestEvent",
    "RawTextEvent",
    "StepFinishEvent",
    "StepStartEvent",
    "StreamEvent",
    "StreamParser",
    "TextEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "ToolUseEvent",
]
