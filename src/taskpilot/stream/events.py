"""Pydantic v2 models for NDJSON events emitted by the agent CLI."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _Part(BaseModel):
    """Common payload fields; unknown keys are preserved."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    session_id: str | None = Field(default=None, alias="sessionID")


class _EventBase(BaseModel):
    """Common envelope shared by every stream event."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    timestamp: int | float | str | None = None
    session_id: str | None = Field(default=None, alias="sessionID")

    @property
    def reported_session_id(self) -> str | None:
        """Session id carried by the envelope or the part, if any."""
        part = getattr(self, "part", None)
        part_session = getattr(part, "session_id", None)
        return part_session or self.session_id


class TextPart(_Part):
    text: str = ""


class TextEvent(_EventBase):
    """Assistant text chunk."""

    type: Literal["text"] = "text"
    part: TextPart = Field(default_factory=TextPart)


class ToolCallPart(_Part):
    tool: str = "unknown"
    input: Any = None


class ToolCallEvent(_EventBase):
    """The agent invoked a tool."""

    type: Literal["tool_call"] = "tool_call"
    part: ToolCallPart = Field(default_factory=ToolCallPart)


class ToolState(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str | None = None
    input: Any = None
    output: str | None = None


class ToolUsePart(_Part):
    tool: str = "unknown"
    state: ToolState = Field(default_factory=ToolState)


class ToolUseEvent(_EventBase):
    """Combined tool call and (eventually) its result."""

    type: Literal["tool_use"] = "tool_use"
    part: ToolUsePart = Field(default_factory=ToolUsePart)

    @property
    def is_finished(self) -> bool:
        return self.part.state.status in ("completed", "error")


class ToolResultPart(_Part):
    tool: str | None = None
    output: str = ""
    is_error: bool = Field(default=False, alias="isError")


class ToolResultEvent(_EventBase):
    """Output returned by a tool."""

    type: Literal["tool_result"] = "tool_result"
    part: ToolResultPart = Field(default_factory=ToolResultPart)


class StepStartEvent(_EventBase):
    """The agent began a reasoning step; carries the session id."""

    type: Literal["step_start"] = "step_start"
    part: _Part = Field(default_factory=_Part)


class StepFinishPart(_Part):
    reason: str = "stop"
    tokens: dict[str, Any] | None = None
    cost: float | None = None


class StepFinishEvent(_EventBase):
    """The agent finished a reasoning step."""

    type: Literal["step_finish"] = "step_finish"
    part: StepFinishPart = Field(default_factory=StepFinishPart)


class PermissionRequestEvent(_EventBase):
    """The agent is blocked on an out-of-band approval."""

    type: Literal["permission_request"] = "permission_request"
    part: dict[str, Any] = Field(default_factory=dict)


class CompletePart(_Part):
    status: Literal[
        "success", "blocked", "partial", "error", "interrupted", "cancelled"
    ] = "success"
    error: str | None = None


class CompleteEvent(_EventBase):
    """Terminal result reported by the agent itself."""

    type: Literal["complete"] = "complete"
    part: CompletePart = Field(default_factory=CompletePart)


class ErrorEvent(_EventBase):
    """Unrecoverable failure reported by the agent."""

    type: Literal["error"] = "error"
    part: dict[str, Any] = Field(default_factory=dict)
    error: Any = None

    @property
    def message(self) -> str:
        """Best-effort human-readable error text."""
        for candidate in (self.error, self.part.get("error"), self.part.get("message")):
            if isinstance(candidate, str) and candidate:
                return candidate
            if isinstance(candidate, dict):
                inner = candidate.get("message") or candidate.get("data", {})
                if isinstance(inner, dict):
                    inner = inner.get("message")
                if isinstance(inner, str) and inner:
                    return inner
                name = candidate.get("name")
                if isinstance(name, str) and name:
                    return name
        return "Unknown error"


class RawTextEvent(BaseModel):
    """A stdout line that was not a recognised JSON event.

    Produced by the parser, never by the agent.
    """

    type: Literal["raw"] = "raw"
    text: str
    truncated: bool = False

    @property
    def reported_session_id(self) -> str | None:
        return None


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


StreamEvent = Annotated[
    Annotated[TextEvent, Tag("text")]
    | Annotated[ToolCallEvent, Tag("tool_call")]
    | Annotated[ToolUseEvent, Tag("tool_use")]
    | Annotated[ToolResultEvent, Tag("tool_result")]
    | Annotated[StepStartEvent, Tag("step_start")]
    | Annotated[StepFinishEvent, Tag("step_finish")]
    | Annotated[PermissionRequestEvent, Tag("permission_request")]
    | Annotated[CompleteEvent, Tag("complete")]
    | Annotated[ErrorEvent, Tag("error")]
    | Annotated[RawTextEvent, Tag("raw")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all stream event types."""

#: Event ``type`` values the agent itself may emit.
AGENT_EVENT_TYPES = frozenset(
    {
        "text",
        "tool_call",
        "tool_use",
        "tool_result",
        "step_start",
        "step_finish",
        "permission_request",
        "complete",
        "error",
    }
)
