"""Amazon Bedrock ``invoke-with-response-stream`` decoder.

Bedrock wraps each Anthropic event document in a binary event-stream message
whose payload is ``{"bytes": "<base64 JSON>"}``. Frames are unwrapped here and
handed to the Anthropic decoder.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.errors import DecodeError
from ..models.model import ModelRef
from ..streaming.chunk import Chunk
from ..streaming.event_stream import EventStreamFraming, EventStreamMessage
from .anthropic import AnthropicDecoder
from .base import Framing

LOGGER = logging.getLogger(__name__)


class BedrockDecoder:
    provider = "amazon_bedrock"

    def __init__(self) -> None:
        self._inner = AnthropicDecoder()

    def framing(self) -> Framing:
        return EventStreamFraming()

    def decode_frame(self, frame: Any, model: Optional[ModelRef] = None) -> list[Chunk]:
        if not isinstance(frame, EventStreamMessage):
            return []

        if frame.message_type == "exception":
            message = frame.payload.decode("utf-8", errors="replace")
            return [Chunk.meta({"error": {"type": frame.exception_type or "exception", "message": message}})]
        if frame.message_type not in (None, "event"):
            return []

        try:
            document = frame.json()
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecodeError(f"Unparseable Bedrock event payload: {exc}") from exc
        if not isinstance(document, dict):
            return []
        return self._inner.decode_event(document, frame.event_type, model)
