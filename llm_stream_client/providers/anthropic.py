"""Anthropic Messages API stream decoder."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..models.model import ModelRef
from ..streaming.chunk import Chunk
from .base import SSEJSONDecoder, _error_meta

LOGGER = logging.getLogger(__name__)


class AnthropicDecoder(SSEJSONDecoder):
    """Decode ``message_*`` / ``content_block_*`` events.

    ``decode_event`` is shared with the Bedrock decoder, which receives the same
    documents wrapped in binary event-stream envelopes.
    """

    provider = "anthropic"

    def decode_event(
        self,
        payload: dict[str, Any],
        event_name: Optional[str],
        model: Optional[ModelRef],
    ) -> list[Chunk]:
        event_type = payload.get("type") or event_name

        if event_type == "content_block_delta":
            return self._decode_block_delta(payload)

        if event_type == "content_block_start":
            block = payload.get("content_block") or {}
            if not isinstance(block, dict):
                return []
            index = payload.get("index", 0)
            if block.get("type") in ("tool_use", "server_tool_use") and block.get("name"):
                arguments = block.get("input") if isinstance(block.get("input"), dict) else {}
                metadata = {"index": index}
                if block.get("id"):
                    metadata["id"] = block["id"]
                return [Chunk.tool_call(block["name"], arguments, metadata)]
            if block.get("type") == "text" and block.get("text"):
                return [Chunk.text(block["text"])]
            if block.get("type") == "thinking" and block.get("thinking"):
                return [Chunk.reasoning(block["thinking"])]
            return []

        if event_type == "message_start":
            message = payload.get("message") or {}
            meta: dict[str, Any] = {}
            if isinstance(message, dict):
                if isinstance(message.get("usage"), dict):
                    meta["usage"] = message["usage"]
                if message.get("id"):
                    meta["response_id"] = message["id"]
                if message.get("model"):
                    meta["model"] = message["model"]
            return [Chunk.meta(meta)] if meta else []

        if event_type == "message_delta":
            delta = payload.get("delta") or {}
            meta = {}
            if isinstance(delta, dict) and delta.get("stop_reason"):
                meta["finish_reason"] = delta["stop_reason"]
            if isinstance(payload.get("usage"), dict):
                meta["usage"] = payload["usage"]
            return [Chunk.meta(meta)] if meta else []

        if event_type == "message_stop":
            metrics = payload.get("amazon-bedrock-invocationMetrics")
            if isinstance(metrics, dict):
                return [Chunk.meta({"usage": {
                    "input_tokens": metrics.get("inputTokenCount"),
                    "output_tokens": metrics.get("outputTokenCount"),
                }})]
            return []

        if event_type == "error":
            error = _error_meta(payload)
            return [Chunk.meta(error)] if error else []

        return []

    def _decode_block_delta(self, payload: dict[str, Any]) -> list[Chunk]:
        delta = payload.get("delta") or {}
        if not isinstance(delta, dict):
            return []
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text")
            return [Chunk.text(text)] if isinstance(text, str) and text else []
        if delta_type == "thinking_delta":
            text = delta.get("thinking")
            return [Chunk.reasoning(text)] if isinstance(text, str) and text else []
        if delta_type == "input_json_delta":
            fragment = delta.get("partial_json")
            if isinstance(fragment, str) and fragment:
                return [Chunk.meta({"tool_call_args": {"index": payload.get("index", 0), "fragment": fragment}})]
        return []
