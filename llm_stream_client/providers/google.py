"""Google Gemini ``streamGenerateContent?alt=sse`` decoder."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..models.model import ModelRef
from ..streaming.chunk import Chunk
from .base import SSEJSONDecoder, _error_meta

LOGGER = logging.getLogger(__name__)


class GoogleDecoder(SSEJSONDecoder):
    provider = "google"

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

        for candidate in payload.get("candidates") or []:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content") or {}
            parts = content.get("parts") if isinstance(content, dict) else None
            for position, part in enumerate(parts or []):
                if not isinstance(part, dict):
                    continue
                text = part.get("text")
                if isinstance(text, str) and text:
                    chunks.append(Chunk.reasoning(text) if part.get("thought") else Chunk.text(text))
                call = part.get("functionCall")
                if isinstance(call, dict) and call.get("name"):
                    arguments = call.get("args") if isinstance(call.get("args"), dict) else {}
                    metadata: dict[str, Any] = {"index": position}
                    if call.get("id"):
                        metadata["id"] = call["id"]
                    chunks.append(Chunk.tool_call(call["name"], arguments, metadata))
            if candidate.get("finishReason"):
                meta["finish_reason"] = candidate["finishReason"]

        if isinstance(payload.get("usageMetadata"), dict):
            meta["usage"] = payload["usageMetadata"]
        if payload.get("modelVersion"):
            meta["model"] = payload["modelVersion"]
        if payload.get("responseId"):
            meta["response_id"] = payload["responseId"]

        if "finish_reason" in meta or "usage" in meta:
            chunks.append(Chunk.meta(meta))
        return chunks
