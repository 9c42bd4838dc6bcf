"""Tests for AWS binary event-stream framing."""

from __future__ import annotations

import base64
import json
import struct
import zlib

import pytest

from llm_stream_client.streaming.event_stream import (
    EventStreamFraming,
    EventStreamMessage,
    MalformedFrame,
    encode_event_stream_message,
    parse_event_stream,
)


def _bedrock_message(document: dict) -> bytes:
    wrapped = json.dumps({"bytes": base64.b64encode(json.dumps(document).encode()).decode()})
    return encode_event_stream_message(
        wrapped.encode(),
        {":event-type": "chunk", ":message-type": "event", ":content-type": "application/json"},
    )


def _corrupt_message_crc(message: bytes) -> bytes:
    return message[:-1] + bytes([message[-1] ^ 0xFF])


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def test_partial_message_is_incomplete_until_the_rest_arrives() -> None:
    message = encode_event_stream_message(b'{"a": 1}', {":event-type": "chunk"})

    first = parse_event_stream(b"", message[:10])
    assert first.status == "incomplete"
    assert first.frames == []
    assert first.buffer == message[:10]

    second = parse_event_stream(first.buffer, message[10:])
    assert second.status == "ok"
    assert second.buffer == b""
    assert second.frames == [EventStreamMessage(headers={":event-type": "chunk"}, payload=b'{"a": 1}')]


def test_split_at_every_offset_yields_the_same_messages() -> None:
    stream = b"".join(_bedrock_message({"type": "ping", "n": n}) for n in range(3))
    whole = parse_event_stream(b"", stream)
    assert len(whole.frames) == 3
    assert whole.buffer == b""

    for offset in range(len(stream) + 1):
        first = parse_event_stream(b"", stream[:offset])
        second = parse_event_stream(first.buffer, stream[offset:])
        assert first.frames + second.frames == whole.frames, offset
        assert second.buffer == b""


def test_headers_and_envelope_unwrap() -> None:
    frame = parse_event_stream(b"", _bedrock_message({"type": "message_start"})).frames[0]
    assert isinstance(frame, EventStreamMessage)
    assert frame.event_type == "chunk"
    assert frame.message_type == "event"
    assert frame.exception_type is None
    assert frame.json() == {"type": "message_start"}


def test_typed_header_values_decode() -> None:
    header_bytes = b""
    header_bytes += b"\x04flag" + b"\x00"
    header_bytes += b"\x03int" + b"\x04" + struct.pack(">i", -7)
    header_bytes += b"\x03raw" + b"\x06" + struct.pack(">H", 2) + b"\x01\x02"
    payload = b"{}"

    total = 12 + len(header_bytes) + len(payload) + 4
    head = struct.pack(">II", total, len(header_bytes))
    body = head + struct.pack(">I", zlib.crc32(head)) + header_bytes + payload
    message = body + struct.pack(">I", zlib.crc32(body))

    frame = parse_event_stream(b"", message).frames[0]
    assert frame.headers == {"flag": True, "int": -7, "raw": b"\x01\x02"}


def test_bad_message_crc_skips_exactly_that_message() -> None:
    good = _bedrock_message({"type": "ping"})
    bad = _corrupt_message_crc(_bedrock_message({"type": "content_block_delta"}))

    result = parse_event_stream(b"", good + bad + good)
    assert [type(frame) for frame in result.frames] == [EventStreamMessage, MalformedFrame, EventStreamMessage]
    assert result.frames[1] == MalformedFrame("invalid_message_crc", bad)
    assert result.buffer == b""


def test_garbage_before_a_message_resynchronises() -> None:
    good = _bedrock_message({"type": "ping"})
    garbage = b"\x00garbage-bytes-here"

    result = parse_event_stream(b"", garbage + good)
    assert result.frames[0] == MalformedFrame("invalid_prelude", garbage)
    assert isinstance(result.frames[1], EventStreamMessage)
    assert result.buffer == b""


def test_unresynchronisable_garbage_keeps_a_possible_prelude_tail() -> None:
    garbage = bytes(range(40))
    result = parse_event_stream(b"", garbage)
    assert result.frames == [MalformedFrame("invalid_prelude", garbage[:-11])]
    assert result.buffer == garbage[-11:]


def test_json_rejects_bad_envelopes() -> None:
    with pytest.raises(ValueError):
        EventStreamMessage(payload=b"not json").json()
    with pytest.raises(ValueError):
        EventStreamMessage(payload=b'{"bytes": "***"}').json()


# -----------------------------------------------------------------------------
# Framing Strategy
# -----------------------------------------------------------------------------


def test_framing_flush_reports_truncated_tail() -> None:
    framing = EventStreamFraming()
    message = _bedrock_message({"type": "ping"})
    frames, buffer = framing.split(b"", message[:20])
    assert frames == []
    assert framing.flush(buffer) == [MalformedFrame("truncated", message[:20])]
    assert framing.flush(b"") == []


def test_framing_terminal_on_message_stop() -> None:
    framing = EventStreamFraming()
    stop = parse_event_stream(b"", _bedrock_message({"type": "message_stop"})).frames[0]
    ping = parse_event_stream(b"", _bedrock_message({"type": "ping"})).frames[0]
    assert framing.is_terminal(stop) is True
    assert framing.is_terminal(ping) is False
    assert framing.is_terminal(MalformedFrame("truncated")) is False
