"""AWS binary event-stream framing.

Each message on the wire is laid out as::

    total length (u32 BE) | headers length (u32 BE) | prelude CRC32
    headers | payload | message CRC32

``parse_event_stream`` is pure: it takes the carry-over buffer plus a new
fragment and returns decoded messages, malformed-frame markers and the new
buffer. Bytes are never dropped: everything consumed from the buffer is carried
by exactly one returned frame.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import struct
import uuid
import zlib
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional, Union

LOGGER = logging.getLogger(__name__)

PRELUDE_LENGTH = 12
CHECKSUM_LENGTH = 4
MIN_MESSAGE_LENGTH = PRELUDE_LENGTH + CHECKSUM_LENGTH
MAX_MESSAGE_LENGTH = 16 * 1024 * 1024

# Header value type tags
_HEADER_TRUE = 0
_HEADER_FALSE = 1
_HEADER_BYTE = 2
_HEADER_SHORT = 3
_HEADER_INT = 4
_HEADER_LONG = 5
_HEADER_BYTES = 6
_HEADER_STRING = 7
_HEADER_TIMESTAMP = 8
_HEADER_UUID = 9

_FIXED_WIDTH = {
    _HEADER_BYTE: ">b",
    _HEADER_SHORT: ">h",
    _HEADER_INT: ">i",
    _HEADER_LONG: ">q",
    _HEADER_TIMESTAMP: ">q",
}


# -----------------------------------------------------------------------------
# Frame Types
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EventStreamMessage:
    """One validated event-stream message."""

    headers: dict[str, Any] = field(default_factory=dict)
    payload: bytes = b""

    @property
    def event_type(self) -> Optional[str]:
        value = self.headers.get(":event-type")
        return value if isinstance(value, str) else None

    @property
    def message_type(self) -> Optional[str]:
        value = self.headers.get(":message-type")
        return value if isinstance(value, str) else None

    @property
    def exception_type(self) -> Optional[str]:
        value = self.headers.get(":exception-type")
        return value if isinstance(value, str) else None

    def json(self) -> Any:
        """Decode the payload as JSON, unwrapping the ``{"bytes": <base64>}`` envelope.

        Raises:
            ValueError: payload (or the wrapped document) is not valid JSON/base64.
        """
        document = json.loads(self.payload.decode("utf-8"))
        if isinstance(document, dict) and isinstance(document.get("bytes"), str):
            try:
                inner = base64.b64decode(document["bytes"], validate=True)
            except binascii.Error as exc:
                raise ValueError(f"invalid base64 event payload: {exc}") from exc
            return json.loads(inner.decode("utf-8"))
        return document


@dataclass(frozen=True, slots=True)
class MalformedFrame:
    """Bytes that could not be decoded into a frame; skipped by the session."""

    reason: str
    raw: bytes = b""


EventStreamFrame = Union[EventStreamMessage, MalformedFrame]


@dataclass(frozen=True, slots=True)
class EventStreamResult:
    status: Literal["ok", "incomplete"]
    frames: list[EventStreamFrame]
    buffer: bytes


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def _read_prelude(data: bytes, offset: int) -> Optional[tuple[int, int]]:
    """Return ``(total_length, headers_length)`` when the prelude at ``offset`` is valid."""
    total_length, headers_length, prelude_crc = struct.unpack_from(">III", data, offset)
    if zlib.crc32(data[offset : offset + 8]) != prelude_crc:
        return None
    if total_length < MIN_MESSAGE_LENGTH or total_length > MAX_MESSAGE_LENGTH:
        return None
    if headers_length > total_length - MIN_MESSAGE_LENGTH:
        return None
    return total_length, headers_length


def _decode_headers(raw: bytes) -> dict[str, Any]:
    headers: dict[str, Any] = {}
    pos = 0
    end = len(raw)
    while pos < end:
        name_length = raw[pos]
        pos += 1
        name = raw[pos : pos + name_length].decode("utf-8")
        pos += name_length
        if pos >= end:
            raise ValueError(f"header {name!r} is missing its value type")
        value_type = raw[pos]
        pos += 1

        if value_type == _HEADER_TRUE:
            value: Any = True
        elif value_type == _HEADER_FALSE:
            value = False
        elif value_type in _FIXED_WIDTH:
            fmt = _FIXED_WIDTH[value_type]
            width = struct.calcsize(fmt)
            if pos + width > end:
                raise ValueError(f"header {name!r} value is truncated")
            (value,) = struct.unpack_from(fmt, raw, pos)
            pos += width
        elif value_type in (_HEADER_BYTES, _HEADER_STRING):
            if pos + 2 > end:
                raise ValueError(f"header {name!r} length is truncated")
            (length,) = struct.unpack_from(">H", raw, pos)
            pos += 2
            blob = raw[pos : pos + length]
            if len(blob) != length:
                raise ValueError(f"header {name!r} value is truncated")
            pos += length
            value = blob.decode("utf-8") if value_type == _HEADER_STRING else bytes(blob)
        elif value_type == _HEADER_UUID:
            blob = raw[pos : pos + 16]
            if len(blob) != 16:
                raise ValueError(f"header {name!r} value is truncated")
            pos += 16
            value = str(uuid.UUID(bytes=bytes(blob)))
        else:
            raise ValueError(f"unknown header value type {value_type} for {name!r}")
        headers[name] = value
    return headers


def _resync(data: bytes, start: int) -> Optional[int]:
    """Return the next offset after ``start`` whose prelude validates."""
    for candidate in range(start + 1, len(data) - PRELUDE_LENGTH + 1):
        if _read_prelude(data, candidate) is not None:
            return candidate
    return None


def parse_event_stream(buffer: bytes, fragment: bytes = b"") -> EventStreamResult:
    """Split ``buffer + fragment`` into event-stream frames.

    Returns ``status="incomplete"`` with the full input as buffer when no frame
    could be completed. Checksum or length failures produce ``MalformedFrame``
    entries: a bad message CRC consumes the declared message length, a bad
    prelude resynchronises at the next offset whose prelude validates.
    """
    data = bytes(buffer) + bytes(fragment)
    frames: list[EventStreamFrame] = []
    offset = 0

    while len(data) - offset >= PRELUDE_LENGTH:
        prelude = _read_prelude(data, offset)
        if prelude is None:
            next_offset = _resync(data, offset)
            if next_offset is None:
                # The last PRELUDE_LENGTH - 1 bytes may still start a valid message.
                keep_from = len(data) - (PRELUDE_LENGTH - 1)
                if keep_from > offset:
                    frames.append(MalformedFrame("invalid_prelude", data[offset:keep_from]))
                    offset = keep_from
                break
            frames.append(MalformedFrame("invalid_prelude", data[offset:next_offset]))
            offset = next_offset
            continue

        total_length, headers_length = prelude
        if len(data) - offset < total_length:
            break

        message = data[offset : offset + total_length]
        offset += total_length

        (message_crc,) = struct.unpack_from(">I", message, total_length - CHECKSUM_LENGTH)
        if zlib.crc32(message[:-CHECKSUM_LENGTH]) != message_crc:
            frames.append(MalformedFrame("invalid_message_crc", message))
            continue

        headers_end = PRELUDE_LENGTH + headers_length
        try:
            headers = _decode_headers(message[PRELUDE_LENGTH:headers_end])
        except (ValueError, UnicodeDecodeError) as exc:
            LOGGER.debug("Event-stream header decode failed: %s", exc)
            frames.append(MalformedFrame("invalid_headers", message))
            continue

        frames.append(
            EventStreamMessage(
                headers=headers,
                payload=message[headers_end : total_length - CHECKSUM_LENGTH],
            )
        )

    rest = data[offset:]
    return EventStreamResult(status="ok" if frames else "incomplete", frames=frames, buffer=rest)


def encode_event_stream_message(payload: bytes, headers: Optional[Mapping[str, str]] = None) -> bytes:
    """Encode one message with string-valued headers."""
    header_bytes = bytearray()
    for name, value in (headers or {}).items():
        name_raw = name.encode("utf-8")
        value_raw = str(value).encode("utf-8")
        header_bytes += struct.pack(">B", len(name_raw)) + name_raw
        header_bytes += struct.pack(">BH", _HEADER_STRING, len(value_raw)) + value_raw

    total_length = PRELUDE_LENGTH + len(header_bytes) + len(payload) + CHECKSUM_LENGTH
    head = struct.pack(">II", total_length, len(header_bytes))
    prelude = head + struct.pack(">I", zlib.crc32(head))
    body = prelude + bytes(header_bytes) + bytes(payload)
    return body + struct.pack(">I", zlib.crc32(body))


class EventStreamFraming:
    """Length-prefixed binary framing used by Bedrock streaming responses."""

    name = "aws_event_stream"

    def split(self, buffer: bytes, fragment: bytes) -> tuple[list[EventStreamFrame], bytes]:
        result = parse_event_stream(buffer, fragment)
        return result.frames, result.buffer

    def flush(self, buffer: bytes) -> list[EventStreamFrame]:
        """Report bytes left over at end-of-stream as a truncated frame."""
        return [MalformedFrame("truncated", bytes(buffer))] if buffer else []

    def is_terminal(self, frame: Any) -> bool:
        if not isinstance(frame, EventStreamMessage):
            return False
        try:
            document = frame.json()
        except (ValueError, UnicodeDecodeError):
            return False
        return isinstance(document, dict) and document.get("type") == "message_stop"
