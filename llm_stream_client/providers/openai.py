"""OpenAI-compatible stream decoders.

- OpenAIChatDecoder: ``chat.completion.chunk`` deltas (OpenAI, Groq, xAI, OpenRouter)
- OpenAIResponsesDecoder: typed Responses API events (``response.*``)

Streaming tool calls are reported as a ``tool_call`` chunk when the call is
announced, followed by ``meta`` chunks carrying ``tool_call_args`` fragments
that the response façade stitches back together by index.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..models.model import ModelRef
from ..streaming.chunk import Chunk
from .base import SSEJSONDecoder, _error_meta

LOGGER = logging.getLogger(__name__)


def _args_fragment(index: int, fragment: Any) -> Optional[Chunk]:
    if isinstance(fragment, str) and fragment:
        return Chunk.meta({"tool_call_args": {"index": index, "fragment": fragment}})
    return None


# -----------------------------------------------------------------------------
# Chat Completions
# -----------------------------------------------------------------------------


class OpenAIChatDecoder(SSEJSONDecoder):
    """Decode ``/chat/completions`` streaming deltas."""

    provider = "openai"

    def __init__(self, provider: Optional[str] = None) -> None:
        if provider:
            self.provider = provider

    def decode_event(
        self,
        payload: dict[str, Any],
        event_name: Optional[str],
        model: Optional[ModelRef],
    ) -> list[Chunk]:
        error = _error_meta(payload)
        if error is not None:
            return [Chunk.meta(error)]

        chunks: list[Chunk] = []
        meta: dict[str, Any] = {}

        for choice in payload.get("choices") or []:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta") or {}
            if isinstance(delta, dict):
                chunks.extend(self._decode_delta(delta))
            finish_reason = choice.get("finish_reason")
            if finish_reason:
                meta["finish_reason"] = finish_reason

        usage = payload.get("usage")
        if isinstance(usage, dict):
            meta["usage"] = usage

        if meta:
            if payload.get("id"):
                meta["response_id"] = payload["id"]
            if payload.get("model"):
                meta["model"] = payload["model"]
            chunks.append(Chunk.meta(meta))
        return chunks

    def _decode_delta(self, delta: dict[str, Any]) -> list[Chunk]:
        chunks: list[Chunk] = []

        # OpenRouter/xAI use "reasoning", DeepSeek-style APIs "reasoning_content"
        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            chunks.append(Chunk.reasoning(reasoning))

        content = delta.get("content")
        if isinstance(content, str) and content:
            chunks.append(Chunk.text(content))

        for position, call in enumerate(delta.get("tool_calls") or []):
            if not isinstance(call, dict):
                continue
            index = call.get("index", position)
            function = call.get("function") or {}
            name = function.get("name")
            if isinstance(name, str) and name:
                metadata = {"index": index}
                if call.get("id"):
                    metadata["id"] = call["id"]
                chunks.append(Chunk.tool_call(name, {}, metadata))
            fragment = _args_fragment(index, function.get("arguments"))
            if fragment is not None:
                chunks.append(fragment)
        return chunks


# -----------------------------------------------------------------------------
# Responses API
# -----------------------------------------------------------------------------


class OpenAIResponsesDecoder(SSEJSONDecoder):
    """Decode typed ``response.*`` events from the Responses API."""

    provider = "openai_responses"

    def decode_event(
        self,
        payload: dict[str, Any],
        event_name: Optional[str],
        model: Optional[ModelRef],
    ) -> list[Chunk]:
        event_type = payload.get("type") or event_name

        if event_type == "response.output_text.delta":
            text = payload.get("delta")
            return [Chunk.text(text)] if isinstance(text, str) and text else []

        if event_type in ("response.reasoning.delta", "response.reasoning_text.delta", "response.reasoning_summary_text.delta"):
            text = payload.get("delta")
            return [Chunk.reasoning(text)] if isinstance(text, str) and text else []

        if event_type == "response.output_item.added":
            item = payload.get("item") or {}
            if isinstance(item, dict) and item.get("type") == "function_call" and item.get("name"):
                metadata = {"index": payload.get("output_index", 0)}
                call_id = item.get("call_id") or item.get("id")
                if call_id:
                    metadata["id"] = call_id
                return [Chunk.tool_call(item["name"], {}, metadata)]
            return []

        if event_type == "response.function_call_arguments.delta":
            index = payload.get("output_index", payload.get("index", 0))
            fragment = _args_fragment(index, payload.get("delta"))
            return [fragment] if fragment is not None else []

        if event_type == "response.usage":
            usage = payload.get("usage")
            return [Chunk.meta({"usage": usage})] if isinstance(usage, dict) else []

        if event_type == "response.completed":
            response = payload.get("response") or {}
            meta: dict[str, Any] = {"terminal": True, "finish_reason": "stop"}
            if isinstance(response, dict):
                if any(
                    isinstance(item, dict) and item.get("type") == "function_call"
                    for item in response.get("output") or []
                ):
                    meta["finish_reason"] = "tool_calls"
                if isinstance(response.get("usage"), dict):
                    meta["usage"] = response["usage"]
                if response.get("id"):
                    meta["response_id"] = response["id"]
                if response.get("model"):
                    meta["model"] = response["model"]
            return [Chunk.meta(meta)]

        if event_type == "response.incomplete":
            response = payload.get("response") or {}
            details = response.get("incomplete_details") if isinstance(response, dict) else None
            reason = (details or {}).get("reason") if isinstance(details, dict) else None
            meta = {"terminal": True, "finish_reason": reason or payload.get("reason") or "incomplete"}
            if isinstance(response, dict) and isinstance(response.get("usage"), dict):
                meta["usage"] = response["usage"]
            return [Chunk.meta(meta)]

        if event_type in ("response.failed", "error"):
            response = payload.get("response") or {}
            error = _error_meta(response if isinstance(response, dict) and response.get("error") else payload)
            meta = {"terminal": True, "finish_reason": "error"}
            if error is not None:
                meta.update(error)
            elif payload.get("message"):
                meta["error"] = {"message": payload["message"], "code": payload.get("code")}
            return [Chunk.meta(meta)]

        return []
