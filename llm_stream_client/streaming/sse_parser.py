"""Server-Sent Events (SSE) parsing.

This module turns raw response bytes into complete SSE records:
- Incremental, pure parsing with an explicit carry-over buffer
- Event line parsing (data:, event:, id:, retry:, comments)
- Multi-line event accumulation
- Termination sentinel detection ([DONE], {"done": true}, message_stop)

The parser works on bytes so a multi-byte character split across two network
reads is only decoded once the whole line is available.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterable, Optional

from ..core.utils import _safe_json_loads

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

_LINE_END = re.compile(rb"\r\n|\r|\n")


@dataclass(frozen=True, slots=True)
class SSEEvent:
    """One complete SSE record."""

    data: str
    event: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None

    @property
    def payload(self) -> Optional[dict[str, Any]]:
        """Return the JSON-decoded ``data`` when it is an object, else None."""
        parsed = _safe_json_loads(self.data)
        return parsed if isinstance(parsed, dict) else None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL


def is_terminal(event: SSEEvent) -> bool:
    """Return True when ``event`` signals the end of the stream."""
    if event.is_done:
        return True
    payload = event.payload
    if payload is None:
        return False
    return payload.get("done") is True or payload.get("type") == "message_stop"


def _next_line(data: bytes, start: int) -> Optional[tuple[bytes, int]]:
    """Return ``(line, next_start)`` or None when no complete line is buffered.

    A lone trailing ``\\r`` is not yet a line end: the next byte may be ``\\n``.
    """
    match = _LINE_END.search(data, start)
    if match is None:
        return None
    if match.group() == b"\r" and match.end() == len(data):
        return None
    return data[start : match.start()], match.end()


def parse_sse(buffer: bytes, fragment: bytes) -> tuple[list[SSEEvent], bytes]:
    """Parse ``buffer + fragment`` into complete events plus the new carry-over buffer.

    The returned buffer holds every byte after the last dispatched record, so
    feeding it back with the next fragment reproduces the same result as parsing
    the concatenated input in one call.

    Args:
        buffer: Leftover bytes returned by the previous call (may be empty).
        fragment: Newly received bytes.

    Returns:
        tuple: (events in arrival order, new leftover buffer)
    """
    data = bytes(buffer) + bytes(fragment)
    events: list[SSEEvent] = []
    consumed = 0
    position = 0

    data_parts: list[str] = []
    event_name: Optional[str] = None
    event_id: Optional[str] = None
    retry: Optional[int] = None

    while True:
        found = _next_line(data, position)
        if found is None:
            break
        raw_line, position = found

        if not raw_line:
            # Blank line = record boundary
            if data_parts:
                events.append(
                    SSEEvent(
                        data="\n".join(data_parts),
                        event=event_name,
                        id=event_id,
                        retry=retry,
                    )
                )
            data_parts = []
            event_name = None
            event_id = None
            retry = None
            consumed = position
            continue

        if raw_line.startswith(b":"):
            continue

        line = raw_line.decode("utf-8", errors="replace")
        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            data_parts.append(value)
        elif field == "event":
            event_name = value
        elif field == "id":
            if "\x00" not in value:
                event_id = value
        elif field == "retry":
            if value.isdigit():
                retry = int(value)
        else:
            LOGGER.debug("Ignoring unknown SSE field: %r", field)

    return events, data[consumed:]


def parse_sse_bytes(blob: bytes) -> list[SSEEvent]:
    """Parse a complete response body, including a final record lacking its blank line."""
    events, rest = parse_sse(b"", blob)
    if rest.strip():
        tail, _ = parse_sse(b"", rest + b"\n\n")
        events.extend(tail)
    return events


async def iter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncGenerator[SSEEvent, None]:
    """Yield SSE events from an async iterable of raw byte chunks."""
    buffer = b""
    async for chunk in chunks:
        events, buffer = parse_sse(buffer, chunk)
        for event in events:
            yield event
    if buffer.strip():
        for event in parse_sse_bytes(buffer):
            yield event


class SSEFraming:
    """Line-oriented SSE framing used by every JSON-over-SSE provider."""

    name = "sse"

    def split(self, buffer: bytes, fragment: bytes) -> tuple[list[SSEEvent], bytes]:
        return parse_sse(buffer, fragment)

    def flush(self, buffer: bytes) -> list[SSEEvent]:
        """Return records left in ``buffer`` when the transport reports end-of-stream."""
        if not buffer.strip():
            return []
        return parse_sse_bytes(buffer)

    def is_terminal(self, frame: Any) -> bool:
        return isinstance(frame, SSEEvent) and is_terminal(frame)
