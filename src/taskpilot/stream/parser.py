"""Incremental NDJSON parser for agent CLI stdout."""

from __future__ import annotations

import json
import logging
import re

from pydantic import TypeAdapter, ValidationError

from taskpilot.stream.events import AGENT_EVENT_TYPES, RawTextEvent, StreamEvent

logger = logging.getLogger(__name__)

#: Maximum bytes buffered for a single unterminated line (1 MB).
DEFAULT_MAX_LINE_BYTES = 1_048_576

#: Characters of an unparseable line kept in log previews.
_PREVIEW_LEN = 200

#: Terminal control sequences (CSI and OSC) that a terminal-attached CLI may emit.
_ANSI_RE = re.compile(
    r"\x1b\[[0-9;?]*[a-zA-Z]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
)

_EVENT_ADAPTER: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


class StreamParser:
    """Turn arbitrary stdout chunks into discrete :data:`StreamEvent` objects.

    Lines are split on ``\\n``; a trailing partial line is kept until the
    next :meth:`feed`.  Every complete line yields exactly one event: lines
    that are not a recognised JSON event come back as :class:`RawTextEvent`
    so no subprocess output is lost.

    One parser belongs to one adapter; it carries no state across tasks.
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self._buffer = bytearray()
        self._max_line_bytes = max_line_bytes

    @property
    def buffered_bytes(self) -> int:
        """Size of the pending partial line."""
        return len(self._buffer)

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Append *chunk* and return the events for every completed line."""
        if isinstance(chunk, str):
            chunk = chunk.encode()
        self._buffer.extend(chunk)

        events: list[StreamEvent] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline == -1:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            event = self._parse_line(line)
            if event is not None:
                events.append(event)

        if len(self._buffer) > self._max_line_bytes:
            preview = bytes(self._buffer[:_PREVIEW_LEN]).decode(errors="replace")
            logger.warning(
                "Unterminated stdout line exceeds %d bytes, discarding",
                self._max_line_bytes,
            )
            self._buffer.clear()
            events.append(RawTextEvent(text=preview, truncated=True))

        return events

    def flush(self) -> list[StreamEvent]:
        """Parse whatever is left in the buffer (called at end of stream)."""
        if not self._buffer:
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        event = self._parse_line(line)
        return [event] if event is not None else []

    def reset(self) -> None:
        """Drop any buffered partial line."""
        self._buffer.clear()

    def _parse_line(self, line: bytes) -> StreamEvent | None:
        text = _ANSI_RE.sub("", line.decode(errors="replace")).strip()
        if not text:
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Non-JSON stdout line: %s", text[:_PREVIEW_LEN])
            return RawTextEvent(text=text)

        if not isinstance(data, dict) or data.get("type") not in AGENT_EVENT_TYPES:
            logger.debug("Unrecognised event: %s", text[:_PREVIEW_LEN])
            return RawTextEvent(text=text)

        try:
            return _EVENT_ADAPTER.validate_python(data)
        except ValidationError as exc:
            logger.warning(
                "Malformed %s event (%d errors): %s",
                data.get("type"),
                exc.error_count(),
                text[:_PREVIEW_LEN],
            )
            return RawTextEvent(text=text)
