"""MessageBatcher — coalesce bursts of task messages into one delivery."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from taskpilot.models import TaskMessage

logger = logging.getLogger(__name__)

#: Default quiet window before a batch is delivered.
DEFAULT_BATCH_DELAY_MS = 50


class MessageBatcher:
    """Accumulate messages and deliver them together after a quiet window.

    Every :meth:`add` restarts the window, so a steady stream of events is
    delivered as few batches.  Insertion order is preserved within and
    across batches.  :meth:`close` flushes what is pending; after that the
    batcher delivers nothing.
    """

    def __init__(
        self,
        deliver: Callable[[list[TaskMessage]], None],
        delay_ms: int = DEFAULT_BATCH_DELAY_MS,
    ) -> None:
        self._deliver = deliver
        self._delay = delay_ms / 1000
        self._pending: list[TaskMessage] = []
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add(self, message: TaskMessage) -> None:
        """Queue *message* and restart the delivery window."""
        if self._closed:
            logger.debug("Dropping message %s: batcher closed", message.id)
            return
        self._pending.append(message)
        self._cancel_timer()
        if self._delay <= 0:
            self.flush()
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self.flush)

    def flush(self) -> None:
        """Deliver every pending message now."""
        self._cancel_timer()
        if not self._pending:
            return
        batch, self._pending = self._pending, []
        self._deliver(batch)

    def close(self) -> None:
        """Flush and stop accepting messages.  Idempotent."""
        if self._closed:
            return
        self.flush()
        self._closed = True

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
