"""Tests for output sanitization, tool classification, and message conversion."""

from __future__ import annotations

import pytest

from taskpilot.messages.processor import (
    MAX_TOOL_OUTPUT_CHARS,
    extract_screenshots,
    sanitize_assistant_text,
    sanitize_tool_output,
    strip_internal_blocks,
    to_task_message,
)
from taskpilot.messages.tools import (
    get_model_display_name,
    get_tool_display_name,
    is_hidden_tool,
    is_non_task_continuation_tool,
    matches_tool,
)
from taskpilot.stream.events import (
    StepStartEvent,
    TextEvent,
    ToolCallEvent,
    ToolResultEvent,
    ToolUseEvent,
)

_PNG = "iVBORw0KGgo" + "A" * 120

# ------------------------------------------------------------------ #
# Assistant text
# ------------------------------------------------------------------ #


class TestSanitizeAssistantText:
    def test_plain_text_unchanged(self) -> None:
        assert sanitize_assistant_text("Fixed the bug.") == "Fixed the bug."

    def test_self_contained_block_removed(self) -> None:
        text = "Before <thinking>secret plan</thinking> after"
        assert sanitize_assistant_text(text) == "Before  after"

    def test_tags_case_insensitive_with_attributes(self) -> None:
        text = 'A<Instruction priority="high">do X</INSTRUCTION>B'
        assert sanitize_assistant_text(text) == "AB"

    def test_multiline_block_removed(self) -> None:
        text = "Start\n<scratchpad>\nline 1\nline 2\n</scratchpad>\nEnd"
        assert sanitize_assistant_text(text) == "Start\n\nEnd"

    def test_unterminated_opening_tag_drops_rest(self) -> None:
        text = "Visible part <thought>still thinking about"
        assert sanitize_assistant_text(text) == "Visible part"

    def test_orphan_closing_tag_removed(self) -> None:
        assert sanitize_assistant_text("done</nudge> here") == "done here"

    def test_multiple_blocks(self) -> None:
        text = "<thought>a</thought>one <reflection>b</reflection>two"
        assert sanitize_assistant_text(text) == "one two"

    def test_unrelated_tags_kept(self) -> None:
        text = "Use <div>markup</div> and <thoughtful> words"
        assert sanitize_assistant_text(text) == text

    def test_only_internal_content_returns_none(self) -> None:
        assert sanitize_assistant_text("<thinking>all private</thinking>") is None

    def test_whitespace_only_returns_none(self) -> None:
        assert sanitize_assistant_text("   \n\n  ") is None

    @pytest.mark.parametrize(
        "marker",
        [
            "context_management_protocol",
            "policy_level=critical",
            "<prunable-tools>",
            "thoughtSignature",
        ],
    )
    def test_internal_marker_lines_removed(self, marker: str) -> None:
        text = f"Keep this\nnoise {marker} noise\nAnd this"
        assert sanitize_assistant_text(text) == "Keep this\n\nAnd this"

    def test_excessive_newlines_collapsed(self) -> None:
        assert sanitize_assistant_text("a\n\n\n\n\nb") == "a\n\nb"

    def test_strip_internal_blocks_keeps_surrounding_whitespace(self) -> None:
        assert strip_internal_blocks("x <nudge>y</nudge> z") == "x  z"


# ------------------------------------------------------------------ #
# Tool output
# ------------------------------------------------------------------ #


class TestSanitizeToolOutput:
    def test_ansi_codes_stripped(self) -> None:
        assert sanitize_tool_output("\x1b[31mred\x1b[0m") == "red"

    def test_websocket_urls_replaced(self) -> None:
        out = sanitize_tool_output("connected to ws://127.0.0.1:9222/devtools/abc")
        assert out == "connected to [connection]"

    def test_ref_and_cursor_annotations_removed(self) -> None:
        out = sanitize_tool_output("button [ref=e12] [cursor=pointer] Submit")
        assert out == "button Submit"

    def test_call_log_removed(self) -> None:
        out = sanitize_tool_output("Failed to click\nCall log:\n - waiting for selector")
        assert out == "Failed to click"

    def test_timeout_simplified_on_error(self) -> None:
        out = sanitize_tool_output("TimeoutError: Timeout exceeded, timed out after 30000ms", True)
        assert out == "Timed out after 30s"

    def test_timeout_kept_when_not_error(self) -> None:
        out = sanitize_tool_output("timed out after 30000ms")
        assert out == "timed out after 30000ms"

    def test_protocol_error_simplified(self) -> None:
        out = sanitize_tool_output(
            "Protocol error (Runtime.callFunctionOn): Target closed", is_error=True
        )
        assert out == "Target closed"

    def test_stack_lines_and_error_prefix_removed(self) -> None:
        out = sanitize_tool_output(
            "Error executing code: TypeError: x is undefined\n    at foo (a.js:1:2)",
            is_error=True,
        )
        assert out == "x is undefined"


class TestExtractScreenshots:
    def test_data_url_extracted(self) -> None:
        output = f"Took screenshot data:image/png;base64,{_PNG} done"
        cleaned, attachments = extract_screenshots(output)
        assert cleaned == "Took screenshot [Screenshot captured] done"
        assert len(attachments) == 1
        assert attachments[0].type == "screenshot"
        assert attachments[0].data.startswith("data:image/png;base64,iVBORw0")

    def test_raw_png_extracted(self) -> None:
        cleaned, attachments = extract_screenshots(f'{{"image": "{_PNG}"}}')
        assert len(attachments) == 1
        assert attachments[0].data == f"data:image/png;base64,{_PNG}"
        assert _PNG not in cleaned

    def test_no_images(self) -> None:
        assert extract_screenshots("plain") == ("plain", [])


# ------------------------------------------------------------------ #
# Tool classification
# ------------------------------------------------------------------ #


class TestToolClassification:
    @pytest.mark.parametrize("tool", ["discard", "extract", "context_info", "prune", "distill"])
    def test_hidden_tools(self, tool: str) -> None:
        assert is_hidden_tool(tool)
        assert get_tool_display_name(tool) is None

    def test_hidden_by_suffix(self) -> None:
        assert get_tool_display_name("dcp_prune") is None

    def test_hidden_requires_underscore_boundary(self) -> None:
        assert get_tool_display_name("reprune") == "reprune"

    def test_known_labels(self) -> None:
        assert get_tool_display_name("browser_snapshot") == "Taking screenshot"
        assert get_tool_display_name("browser_click") == "Clicking element"
        assert get_tool_display_name("browser_keyboard") == "Typing"

    def test_unknown_tool_identity(self) -> None:
        assert get_tool_display_name("bash") == "bash"

    def test_matches_tool(self) -> None:
        assert matches_tool("complete_task", "complete_task")
        assert matches_tool("mcp_complete_task", "complete_task")
        assert not matches_tool("complete_tasks", "complete_task")

    def test_non_task_continuation_tools(self) -> None:
        assert is_non_task_continuation_tool("todowrite")
        assert is_non_task_continuation_tool("mcp_complete_task")
        assert is_non_task_continuation_tool("prune")
        assert not is_non_task_continuation_tool("bash")
        assert not is_non_task_continuation_tool("edit")
        assert is_non_task_continuation_tool("AskUserQuestion")


class TestModelDisplayName:
    @pytest.mark.parametrize(
        ("model_id", "expected"),
        [
            ("anthropic/claude-sonnet-4-20250514", "claude-sonnet-4"),
            ("openrouter/google/gemini-2.5-pro", "gemini-2.5-pro"),
            ("gpt-4o", "gpt-4o"),
            ("o3-2025", "o3-2025"),
        ],
    )
    def test_provider_and_date_stripped(self, model_id: str, expected: str) -> None:
        assert get_model_display_name(model_id) == expected

    @pytest.mark.parametrize("model_id", [None, "", "anthropic/"])
    def test_missing_model_is_ai(self, model_id: str | None) -> None:
        assert get_model_display_name(model_id) == "AI"


# ------------------------------------------------------------------ #
# to_task_message
# ------------------------------------------------------------------ #


class TestToTaskMessage:
    def test_text_event(self) -> None:
        msg = to_task_message(TextEvent.model_validate({"part": {"text": "Hello"}}))
        assert msg is not None
        assert msg.type == "assistant"
        assert msg.content == "Hello"
        assert msg.id.startswith("msg_")

    def test_text_event_fully_internal_dropped(self) -> None:
        event = TextEvent.model_validate({"part": {"text": "<thinking>x</thinking>"}})
        assert to_task_message(event) is None

    def test_tool_call_uses_label(self) -> None:
        event = ToolCallEvent.model_validate(
            {"part": {"tool": "browser_click", "input": {"selector": "#go"}}}
        )
        msg = to_task_message(event)
        assert msg is not None
        assert msg.type == "tool"
        assert msg.content == "Using tool: Clicking element"
        assert msg.tool_name == "browser_click"
        assert msg.tool_input == {"selector": "#go"}

    def test_hidden_tool_call_dropped(self) -> None:
        event = ToolCallEvent.model_validate({"part": {"tool": "distill"}})
        assert to_task_message(event) is None

    def test_tool_result_truncated(self) -> None:
        event = ToolResultEvent.model_validate({"part": {"tool": "bash", "output": "y" * 2000}})
        msg = to_task_message(event)
        assert msg is not None
        assert len(msg.content) == MAX_TOOL_OUTPUT_CHARS + 3
        assert msg.content.endswith("...")

    def test_empty_tool_result_gets_fallback(self) -> None:
        event = ToolResultEvent.model_validate({"part": {"tool": "bash", "output": ""}})
        assert to_task_message(event).content == "Tool bash completed"

    def test_tool_result_screenshot_attachment(self) -> None:
        event = ToolResultEvent.model_validate(
            {"part": {"tool": "browser_snapshot", "output": f"data:image/png;base64,{_PNG}"}}
        )
        msg = to_task_message(event)
        assert msg is not None
        assert msg.content == "[Screenshot captured]"
        assert msg.attachments is not None and len(msg.attachments) == 1

    def test_unfinished_tool_use_dropped(self) -> None:
        event = ToolUseEvent.model_validate(
            {"part": {"tool": "bash", "state": {"status": "running", "input": {}}}}
        )
        assert to_task_message(event) is None

    def test_finished_tool_use_error(self) -> None:
        event = ToolUseEvent.model_validate(
            {"part": {"tool": "bash", "state": {"status": "error", "input": {"c": 1}}}}
        )
        msg = to_task_message(event)
        assert msg is not None
        assert msg.content == "Tool bash error"
        assert msg.tool_input == {"c": 1}

    def test_other_events_ignored(self) -> None:
        assert to_task_message(StepStartEvent()) is None
