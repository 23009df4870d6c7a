"""Pydantic v2 models for taskpilot.yaml configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskpilot.completion.enforcer import DEFAULT_MAX_CONTINUATION_ATTEMPTS
from taskpilot.messages.batcher import DEFAULT_BATCH_DELAY_MS
from taskpilot.stream.parser import DEFAULT_MAX_LINE_BYTES

#: Agent CLI looked up on PATH when none is configured.
DEFAULT_CLI_COMMAND = "opencode"


class CliConfig(BaseModel):
    """How to locate and invoke the agent CLI."""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(
        default=DEFAULT_CLI_COMMAND,
        description="Executable name looked up on PATH, or a path to it",
    )
    extra_args: list[str] = Field(
        default_factory=list,
        description="Arguments inserted after the output-format flags",
    )
    system_prompt_flag: str | None = Field(
        default=None,
        description="Flag used to pass TaskConfig.system_prompt_append, if the CLI has one",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables set for every agent process",
    )
    strip_env: list[str] = Field(
        default_factory=list,
        description="Environment variables removed before spawning the agent",
    )

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "CLI command must not be empty"
            raise ValueError(msg)
        return value.strip()


class PilotConfig(BaseModel):
    """Top-level taskpilot.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    max_concurrent_tasks: int = Field(
        default=10,
        ge=1,
        description="Tasks allowed to run at the same time",
    )
    max_queue_length: int | None = Field(
        default=None,
        ge=0,
        description="Tasks allowed to wait for a slot (defaults to max_concurrent_tasks)",
    )
    working_directory: str | None = Field(
        default=None,
        description="Default directory agents run in",
    )
    cli: CliConfig = Field(
        default_factory=CliConfig,
        description="Agent CLI settings",
    )
    cancel_grace_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Seconds between SIGTERM and SIGKILL when cancelling",
    )
    batch_delay_ms: int = Field(
        default=DEFAULT_BATCH_DELAY_MS,
        ge=0,
        description="Quiet window before buffered messages are delivered",
    )
    max_continuation_attempts: int = Field(
        default=DEFAULT_MAX_CONTINUATION_ATTEMPTS,
        ge=0,
        description="Continuation prompts sent before a verdict is forced",
    )
    max_line_bytes: int = Field(
        default=DEFAULT_MAX_LINE_BYTES,
        ge=1024,
        description="Longest stdout line accepted from the agent",
    )

    @model_validator(mode="after")
    def _default_queue_length(self) -> PilotConfig:
        if self.max_queue_length is None:
            self.max_queue_length = self.max_concurrent_tasks
        return self
