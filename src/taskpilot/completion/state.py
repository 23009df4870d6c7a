"""Completion state — one-directional tracking of a task's completion signal."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class CompletionPhase(StrEnum):
    """Where a task stands with respect to its completion signal."""

    AWAITING_SIGNAL = "awaiting_signal"
    SIGNALED = "signaled"
    FORCED = "forced"


class CompleteTaskArgs(BaseModel):
    """Arguments the agent passed to the completion tool."""

    status: str = "unknown"
    summary: str = ""
    original_request_summary: str = ""
    remaining_work: str | None = None


class CompletionState:
    """Phase, continuation budget, and the recorded verdict for one task.

    ``AWAITING_SIGNAL`` moves to ``SIGNALED`` or ``FORCED`` and never back.
    While awaiting, a continuation may be pending (scheduled but not yet
    delivered to the agent); each scheduling spends one attempt.
    """

    def __init__(self, max_continuation_attempts: int) -> None:
        if max_continuation_attempts < 0:
            msg = "max_continuation_attempts must be >= 0"
            raise ValueError(msg)
        self.max_continuation_attempts = max_continuation_attempts
        self.phase = CompletionPhase.AWAITING_SIGNAL
        self.continuation_attempts = 0
        self.continuation_pending = False
        self.args: CompleteTaskArgs | None = None
        self.forced_status: str | None = None
        self.forced_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase is not CompletionPhase.AWAITING_SIGNAL

    @property
    def attempts_exhausted(self) -> bool:
        return self.continuation_attempts >= self.max_continuation_attempts

    def record_signal(self, args: CompleteTaskArgs) -> bool:
        """Record the first completion call.  Later calls are ignored."""
        if self.is_terminal:
            return False
        self.args = args
        self.phase = CompletionPhase.SIGNALED
        self.continuation_pending = False
        return True

    def schedule_continuation(self) -> bool:
        """Spend one attempt on a continuation.  ``False`` once the budget is gone."""
        if self.is_terminal or self.attempts_exhausted:
            return False
        self.continuation_attempts += 1
        self.continuation_pending = True
        return True

    def start_continuation(self) -> None:
        if not self.continuation_pending:
            msg = f"No continuation pending (phase {self.phase})"
            raise RuntimeError(msg)
        self.continuation_pending = False

    def force(self, status: str, reason: str) -> None:
        if self.is_terminal:
            return
        self.phase = CompletionPhase.FORCED
        self.forced_status = status
        self.forced_reason = reason
        self.continuation_pending = False
