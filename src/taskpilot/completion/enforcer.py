"""CompletionEnforcer — make every task end with an explicit verdict."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from taskpilot.completion.prompts import get_continuation_prompt
from taskpilot.completion.state import CompleteTaskArgs, CompletionPhase, CompletionState
from taskpilot.constants import COMPLETION_STATUSES
from taskpilot.models import TaskResult, TodoItem

logger = logging.getLogger(__name__)

#: Continuation prompts injected before a verdict is forced.
DEFAULT_MAX_CONTINUATION_ATTEMPTS = 10

#: Forced verdict when the agent did task work but never confirmed it.
FORCED_COMPLETION_STATUS = "partial"

#: ``step_finish`` reasons that mean the agent ended its turn.
_TURN_END_REASONS = frozenset({"stop", "end_turn"})

DebugCallback = Callable[[str, str, Any], None]


class StepFinishAction(StrEnum):
    """What the adapter should do after a ``step_finish`` event."""

    CONTINUE = "continue"  # mid-turn step, keep reading
    PENDING = "pending"  # deliver the continuation prompt
    COMPLETE = "complete"  # report the final result


class CompletionEnforcer:
    """Per-task state machine around the completion tool.

    The agent is expected to call the completion tool with ``success``,
    ``blocked`` or ``partial``.  When it ends a turn without doing so the
    enforcer schedules a continuation prompt, up to
    *max_continuation_attempts* times, and then forces a verdict derived
    from what it observed (tool use, todo list).

    A turn in which no task tools were ever used is a conversational reply
    and completes immediately with ``success``.
    """

    def __init__(
        self,
        max_continuation_attempts: int = DEFAULT_MAX_CONTINUATION_ATTEMPTS,
        on_debug: DebugCallback | None = None,
    ) -> None:
        self._state = CompletionState(max_continuation_attempts)
        self._on_debug = on_debug
        self._todos: list[TodoItem] = []
        self._tools_used = False
        self._requires_completion = False

    # ------------------------------------------------------------------ #
    # Observations
    # ------------------------------------------------------------------ #

    @property
    def phase(self) -> CompletionPhase:
        return self._state.phase

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def continuation_attempts(self) -> int:
        return self._state.continuation_attempts

    @property
    def continuation_pending(self) -> bool:
        return self._state.continuation_pending

    @property
    def todos(self) -> list[TodoItem]:
        return list(self._todos)

    def update_todos(self, todos: list[TodoItem]) -> None:
        self._todos = list(todos)
        if todos:
            self._requires_completion = True
        self._debug("todo_update", f"Todo list updated: {len(todos)} items")

    def mark_tools_used(self, counts_for_continuation: bool = True) -> None:
        if counts_for_continuation:
            self._tools_used = True

    def mark_task_requires_completion(self) -> None:
        self._requires_completion = True

    def open_todos_summary(self) -> str | None:
        """Bullet list of todos still pending or in progress."""
        open_items = [t for t in self._todos if t.is_open]
        if not open_items:
            return None
        return "\n".join(f"- {t.content}" for t in open_items)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def handle_complete_task(self, tool_input: Any) -> bool:
        """Record a completion tool call.

        Returns ``True`` if this call produced the verdict, ``False`` if a
        verdict already existed.  Success is downgraded to ``partial`` while
        todos are still open; unknown statuses count as ``blocked``.
        """
        if self._state.is_terminal:
            return False

        try:
            args = CompleteTaskArgs.model_validate(
                tool_input if isinstance(tool_input, dict) else {}
            )
        except ValidationError as exc:
            logger.warning("Invalid completion tool arguments: %s", exc)
            args = CompleteTaskArgs()

        if args.status not in COMPLETION_STATUSES:
            self._debug("complete_task", f"Unknown completion status {args.status!r}")
            args.status = "blocked"

        open_todos = self.open_todos_summary()
        if args.status == "success" and open_todos:
            self._debug(
                "incomplete_todos",
                "Agent claimed success with open todos, downgrading to partial",
                {"open_todos": open_todos},
            )
            args.status = "partial"
            args.remaining_work = open_todos

        self._state.record_signal(args)
        self._debug(
            "complete_task",
            f"Completion signalled with status: {args.status}",
            args.model_dump(),
        )
        return True

    def handle_step_finish(self, reason: str) -> StepFinishAction:
        """Decide what follows the end of a reasoning step."""
        if reason not in _TURN_END_REASONS:
            return StepFinishAction.CONTINUE

        if self._state.is_terminal:
            return StepFinishAction.COMPLETE

        if self._state.continuation_pending:
            return StepFinishAction.PENDING

        if self._is_conversational_turn():
            self._state.force("success", "conversational reply, no task tools used")
            self._debug("skip_continuation", "No task tools used, treating as conversational")
            return StepFinishAction.COMPLETE

        if self._state.schedule_continuation():
            self._debug(
                "continuation",
                f"Scheduled continuation prompt (attempt "
                f"{self._state.continuation_attempts}/"
                f"{self._state.max_continuation_attempts})",
            )
            return StepFinishAction.PENDING

        status = self._derive_forced_status()
        logger.warning(
            "Agent stopped without completion after %d continuation attempts, forcing %s",
            self._state.continuation_attempts,
            status,
        )
        self._state.force(status, "continuation attempts exhausted")
        self._debug("forced_completion", f"Forced completion with status: {status}")
        return StepFinishAction.COMPLETE

    def take_continuation_prompt(self) -> str | None:
        """Consume the pending continuation and return its prompt."""
        if not self._state.continuation_pending:
            return None
        self._state.start_continuation()
        return get_continuation_prompt(self.open_todos_summary())

    def build_result(self, session_id: str | None = None) -> TaskResult:
        """Return the verdict, forcing one if the agent never signalled."""
        if not self._state.is_terminal:
            self._state.force(self._derive_forced_status(), "result built without signal")

        if self._state.phase is CompletionPhase.SIGNALED and self._state.args is not None:
            args = self._state.args
            return TaskResult(
                status=args.status,  # type: ignore[arg-type]
                session_id=session_id,
                summary=args.summary or None,
                remaining_work=args.remaining_work,
            )

        return TaskResult(
            status=self._state.forced_status,  # type: ignore[arg-type]
            session_id=session_id,
            remaining_work=self.open_todos_summary(),
            forced=True,
        )

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    def _is_conversational_turn(self) -> bool:
        return (
            not self._tools_used
            and not self._requires_completion
            and self._state.continuation_attempts == 0
        )

    def _derive_forced_status(self) -> str:
        if self._todos and self.open_todos_summary() is None:
            return "success"
        return FORCED_COMPLETION_STATUS

    def _debug(self, kind: str, message: str, data: Any = None) -> None:
        logger.debug("%s: %s", kind, message)
        if self._on_debug is not None:
            self._on_debug(kind, message, data)
