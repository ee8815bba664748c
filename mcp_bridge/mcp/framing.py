"""Message boundary detection for the stdio and SSE transports.

Both decoders are fed whatever the underlying stream hands back (a pipe read
or an HTTP chunk) and only emit complete messages; partial input is buffered
until the rest of it arrives.
"""

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_BYTES = 4 * 1024 * 1024

_LINE_END = re.compile(r"[\r\n]")


class LineFramer:
    """Splits a byte stream into newline-delimited JSON-RPC frames."""

    def __init__(self, max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES):
        self.max_message_bytes = max_message_bytes
        self._buffer = bytearray()
        self._discarding = False
        self._oversized = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes belonging to an incomplete frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Add a chunk and return every frame it completes."""
        frames: list[bytes] = []
        start = 0

        while True:
            newline = data.find(b"\n", start)
            if newline == -1:
                self._append(data[start:])
                break

            if self._discarding:
                # Tail of an oversized frame, drop it and resync
                self._discarding = False
            else:
                self._append(data[start:newline])
                if not self._discarding:
                    frame = self._take()
                    if frame:
                        frames.append(frame)
                else:
                    self._discarding = False
            self._buffer.clear()
            start = newline + 1

        return frames

    def flush(self) -> bytes | None:
        """Return the unterminated frame left at end of stream, if any."""
        if self._discarding:
            self._discarding = False
            self._buffer.clear()
            return None
        frame = self._take()
        return frame or None

    def take_oversized(self) -> int:
        """Return and reset the count of frames dropped for exceeding the limit."""
        count, self._oversized = self._oversized, 0
        return count

    def _append(self, chunk: bytes) -> None:
        if self._discarding or not chunk:
            return
        if len(self._buffer) + len(chunk) > self.max_message_bytes:
            logger.warning(
                f"Dropping frame larger than {self.max_message_bytes} bytes"
            )
            self._buffer.clear()
            self._discarding = True
            self._oversized += 1
            return
        self._buffer.extend(chunk)

    def _take(self) -> bytes:
        frame = bytes(self._buffer).strip()
        self._buffer.clear()
        return frame


@dataclass
class SseEvent:
    """A dispatched server-sent event."""

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None


class SseDecoder:
    """Incremental text/event-stream parser.

    Events larger than max_message_bytes (counted in decoded characters)
    are dropped and the stream resumes at the next event.
    """

    def __init__(self, max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES) -> None:
        self.max_message_bytes = max_message_bytes
        # Pending text holds no line terminator, except possibly a trailing \r
        self._pending: list[str] = []
        self._pending_size = 0
        self._discarding = False
        self._skip_event = False
        self._oversized = 0
        self._event_type = ""
        self._data_lines: list[str] = []
        self._data_size = 0
        self._has_data = False
        self._retry: int | None = None
        self.last_event_id: str | None = None

    def feed(self, text: str) -> list[SseEvent]:
        """Add decoded text and return every event it completes."""
        if not text:
            return []
        held_cr = bool(self._pending) and self._pending[-1].endswith("\r")
        if not held_cr and _LINE_END.search(text) is None:
            self._append(text)
            return []

        buffer = "".join(self._pending) + text
        self._pending = []
        self._pending_size = 0
        events: list[SseEvent] = []
        start = 0

        while True:
            match = _LINE_END.search(buffer, start)
            if match is None:
                break
            end = match.start()
            if buffer[end] == "\r":
                if end + 1 == len(buffer):
                    # Could be the first half of \r\n; wait for more input
                    break
                next_start = end + 2 if buffer[end + 1] == "\n" else end + 1
            else:
                next_start = end + 1

            line = buffer[start:end]
            start = next_start
            if self._discarding:
                # Tail of an oversized line
                self._discarding = False
                continue
            if len(line) > self.max_message_bytes:
                self._drop_event()
                continue
            event = self._process_line(line)
            if event is not None:
                events.append(event)

        self._append(buffer[start:])
        return events

    def take_oversized(self) -> int:
        """Return and reset the count of events dropped for exceeding the limit."""
        count, self._oversized = self._oversized, 0
        return count

    def _append(self, text: str) -> None:
        if self._discarding or not text:
            return
        if self._pending_size + len(text) > self.max_message_bytes:
            self._pending = []
            self._pending_size = 0
            self._drop_event()
            self._discarding = True
            return
        self._pending.append(text)
        self._pending_size += len(text)

    def _drop_event(self) -> None:
        if not self._skip_event:
            logger.warning(f"Dropping event larger than {self.max_message_bytes} bytes")
            self._oversized += 1
        self._skip_event = True
        self._data_lines = []
        self._data_size = 0

    def _process_line(self, line: str) -> SseEvent | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event_type = value
        elif field == "data":
            if self._skip_event:
                return None
            self._data_size += len(value) + 1
            if self._data_size > self.max_message_bytes:
                self._drop_event()
                return None
            self._data_lines.append(value)
            self._has_data = True
        elif field == "id":
            if "\x00" not in value:
                self.last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> SseEvent | None:
        event = None
        if self._has_data and not self._skip_event:
            event = SseEvent(
                event=self._event_type or "message",
                data="\n".join(self._data_lines),
                id=self.last_event_id,
                retry=self._retry,
            )
        self._event_type = ""
        self._data_lines = []
        self._data_size = 0
        self._has_data = False
        self._skip_event = False
        self._retry = None
        return event
