"""Test configuration helpers for unit tests."""

from __future__ import annotations

import json
from typing import Any

import pytest

from llm_stream_client.core.logging_system import SessionLogger
from llm_stream_client.streaming.chunk import Chunk
from llm_stream_client.streaming.sse_parser import SSEEvent, SSEFraming


@pytest.fixture(autouse=True)
def _reset_session_logs():
    """Keep the class-level per-stream log buffers isolated between tests."""
    SessionLogger.logs.clear()
    SessionLogger._last_seen.clear()
    yield
    SessionLogger.logs.clear()
    SessionLogger._last_seen.clear()


class ScriptedDecoder:
    """Decoder that maps SSE record data ``"<n>"`` to ``script[n]``.

    ``"boom"`` raises to simulate a decoder crash; anything else decodes to
    no chunks.
    """

    provider = "scripted"

    def __init__(self, script: list[Any]) -> None:
        self.script = script

    def framing(self) -> SSEFraming:
        return SSEFraming()

    def decode_frame(self, frame: Any, model: Any = None) -> list[Any]:
        if not isinstance(frame, SSEEvent):
            return []
        if frame.data == "boom":
            raise RuntimeError("decoder exploded")
        if frame.data.isdigit():
            item = self.script[int(frame.data)]
            return list(item) if isinstance(item, list) else [item]
        return []


def sse(payload: Any) -> bytes:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n".encode("utf-8")


def openai_delta(text: str) -> bytes:
    return sse({"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]})


DONE = b"data: [DONE]\n\n"


@pytest.fixture
def scripted():
    """Return (decoder, frames) for a list of chunks; frames reference each chunk by index."""

    def _build(chunks: list[Chunk]) -> tuple[ScriptedDecoder, list[bytes]]:
        decoder = ScriptedDecoder(chunks)
        return decoder, [sse(str(i)) for i in range(len(chunks))]

    return _build
