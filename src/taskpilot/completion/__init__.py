"""Completion enforcement — every task ends with an explicit verdict."""

from taskpilot.completion.enforcer import (
    DEFAULT_MAX_CONTINUATION_ATTEMPTS,
    FORCED_COMPLETION_STATUS,
    CompletionEnforcer,
    StepFinishAction,
)
from taskpilot.completion.prompts import get_continuation_prompt
from taskpilot.completion.state import CompleteTaskArgs, CompletionPhase, CompletionState

__all__ = [
    "DEFAULT_MAX_CONTINUATION_ATTEMPTS",
    "FORCED_COMPLETION_STATUS",
    "CompleteTaskArgs",
    "CompletionEnforcer",
    "CompletionPhase",
    "CompletionState",
    "StepFinishAction",
    "get_continuation_prompt",
]
