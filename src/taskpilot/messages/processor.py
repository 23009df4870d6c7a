"""Sanitize agent output and convert stream events into user-visible messages."""

from __future__ import annotations

import re

from taskpilot.messages.tools import get_tool_display_name
from taskpilot.models import TaskAttachment, TaskMessage
from taskpilot.stream.events import (
    StreamEvent,
    TextEvent,
    ToolCallEvent,
    ToolResultEvent,
    ToolUseEvent,
)

#: Maximum characters of tool output shown in a message.
MAX_TOOL_OUTPUT_CHARS = 500

#: Tag names the agent uses for private reasoning and injected instructions.
INTERNAL_TAGS = ("instruction", "nudge", "thought", "scratchpad", "thinking", "reflection")

#: Substrings marking a line of internal protocol chatter.
INTERNAL_LINE_MARKERS = (
    "context_management_protocol",
    "policy_level=critical",
    "<prunable-tools>",
    "thoughtSignature",
)

_TAG_RE = re.compile(
    r"<(/)?(" + "|".join(INTERNAL_TAGS) + r")\b[^>]*>",
    re.IGNORECASE,
)
_CLOSING_TAG_RE = {
    name: re.compile(rf"</{name}\s*>", re.IGNORECASE) for name in INTERNAL_TAGS
}
_INTERNAL_LINE_RE = re.compile(
    r"^.*(?:" + "|".join(re.escape(m) for m in INTERNAL_LINE_MARKERS) + r").*$",
    re.MULTILINE,
)
_EXCESSIVE_NEWLINES_RE = re.compile(r"\n{3,}")

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")
_WS_URL_RE = re.compile(r"wss?://[^\s\]]+")
_REF_RE = re.compile(r"\[ref=e\d+\]")
_CURSOR_RE = re.compile(r"\[cursor=\w+\]")
_CALL_LOG_RE = re.compile(r"\s*Call log:[\s\S]*", re.IGNORECASE)
_SPACE_RUN_RE = re.compile(r" {2,}")
_TIMEOUT_RE = re.compile(r"timed? ?out after (\d+)ms", re.IGNORECASE)
_PROTOCOL_ERROR_RE = re.compile(r"Protocol error \([^)]+\):\s*(.+)", re.IGNORECASE)
_STACK_LINE_RE = re.compile(r"\s+at\s+.+")
_ERROR_PREFIX_RE = re.compile(r"\w+Error:\s*")

_DATA_URL_RE = re.compile(r"data:image/(?:png|jpeg|jpg|webp);base64,[A-Za-z0-9+/=]+")
_RAW_PNG_RE = re.compile(r"(?<![;,])[\"\s]?(iVBORw0[A-Za-z0-9+/=]{100,})(?=[\"\s]|$)")
_SCREENSHOT_PLACEHOLDER = "[Screenshot captured]"


def strip_internal_blocks(text: str) -> str:
    """Remove internal-only tag blocks from *text*.

    A scanner over the fixed :data:`INTERNAL_TAGS` vocabulary:

    * ``<tag ...>...</tag>`` is removed wherever it is self-contained;
    * an opening tag without its closing tag drops everything from the tag
      to the end (private reasoning still streaming in);
    * a closing tag with no opening tag is removed on its own.
    """
    out: list[str] = []
    pos = 0
    while True:
        match = _TAG_RE.search(text, pos)
        if match is None:
            out.append(text[pos:])
            break
        out.append(text[pos : match.start()])
        if match.group(1):
            pos = match.end()
            continue
        closing = _CLOSING_TAG_RE[match.group(2).lower()].search(text, match.end())
        if closing is None:
            break
        pos = closing.end()
    return "".join(out)


def sanitize_assistant_text(text: str) -> str | None:
    """Return the user-visible part of assistant *text*, or ``None`` if nothing is left."""
    result = strip_internal_blocks(text)
    result = _INTERNAL_LINE_RE.sub("", result)
    result = _EXCESSIVE_NEWLINES_RE.sub("\n\n", result)
    result = result.strip()
    return result or None


def sanitize_tool_output(text: str, is_error: bool = False) -> str:
    """Strip terminal codes and element-reference annotations from tool output.

    With *is_error*, well-known browser automation failures are also reduced
    to a short readable message.
    """
    result = _ANSI_RE.sub("", text)
    result = _WS_URL_RE.sub("[connection]", result)
    result = _REF_RE.sub("", result)
    result = _CURSOR_RE.sub("", result)
    result = _CALL_LOG_RE.sub("", result)
    result = _SPACE_RUN_RE.sub(" ", result)

    if is_error:
        timeout = _TIMEOUT_RE.search(result)
        if timeout:
            return f"Timed out after {round(int(timeout.group(1)) / 1000)}s"
        protocol = _PROTOCOL_ERROR_RE.search(result)
        if protocol:
            result = protocol.group(1).strip()
        result = re.sub(r"^Error executing code:\s*", "", result, flags=re.IGNORECASE)
        result = re.sub(r"browserType\.connectOverCDP:\s*", "", result, flags=re.IGNORECASE)
        result = _STACK_LINE_RE.sub("", result)
        result = _ERROR_PREFIX_RE.sub("", result)

    return result.strip()


def extract_screenshots(output: str) -> tuple[str, list[TaskAttachment]]:
    """Pull base64 screenshots out of *output*.

    Returns the text with each image replaced by a placeholder, plus the
    images as attachments.
    """
    attachments = [
        TaskAttachment(type="screenshot", data=m.group(0), label="Browser screenshot")
        for m in _DATA_URL_RE.finditer(output)
    ]
    attachments.extend(
        TaskAttachment(
            type="screenshot",
            data=f"data:image/png;base64,{m.group(1)}",
            label="Browser screenshot",
        )
        for m in _RAW_PNG_RE.finditer(output)
    )

    cleaned = _DATA_URL_RE.sub(_SCREENSHOT_PLACEHOLDER, output)
    cleaned = _RAW_PNG_RE.sub(f" {_SCREENSHOT_PLACEHOLDER}", cleaned)
    doubled = _SCREENSHOT_PLACEHOLDER * 2
    while doubled in cleaned:
        cleaned = cleaned.replace(doubled, _SCREENSHOT_PLACEHOLDER)
    return cleaned, attachments


def _tool_output_message(
    tool_name: str,
    tool_input: object,
    output: str,
    is_error: bool,
) -> TaskMessage:
    cleaned, attachments = extract_screenshots(output)
    text = sanitize_tool_output(cleaned, is_error)
    if len(text) > MAX_TOOL_OUTPUT_CHARS:
        text = text[:MAX_TOOL_OUTPUT_CHARS] + "..."
    status = "error" if is_error else "completed"
    return TaskMessage(
        type="tool",
        content=text or f"Tool {tool_name} {status}",
        tool_name=tool_name,
        tool_input=tool_input,
        attachments=attachments or None,
    )


def to_task_message(event: StreamEvent) -> TaskMessage | None:
    """Convert a stream event into a :class:`TaskMessage`.

    Returns ``None`` when the event has nothing the user should see.
    """
    match event:
        case TextEvent():
            content = sanitize_assistant_text(event.part.text)
            if content is None:
                return None
            return TaskMessage(type="assistant", content=content)

        case ToolCallEvent():
            label = get_tool_display_name(event.part.tool)
            if label is None:
                return None
            return TaskMessage(
                type="tool",
                content=f"Using tool: {label}",
                tool_name=event.part.tool,
                tool_input=event.part.input,
            )

        case ToolUseEvent():
            if not event.is_finished or get_tool_display_name(event.part.tool) is None:
                return None
            state = event.part.state
            return _tool_output_message(
                event.part.tool,
                state.input,
                state.output or "",
                is_error=state.status == "error",
            )

        case ToolResultEvent():
            tool_name = event.part.tool or "tool"
            if get_tool_display_name(tool_name) is None:
                return None
            return _tool_output_message(
                tool_name, None, event.part.output, event.part.is_error
            )

    return None
