"""Provider decoder contracts and registry.

Two strategies are injected into a streaming session:
- Framing: splits raw bytes into complete wire frames (SSE records, binary envelopes)
- EventDecoder: turns one frame into zero or more normalized chunks

Decoders are pure. They return an empty list for well-formed events they do
not care about and raise ``DecodeError`` only when a frame cannot be parsed at
all; the session contains that error to the offending frame.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from ..core.errors import DecodeError
from ..models.model import ModelRef, normalize_provider
from ..streaming.chunk import Chunk
from ..streaming.sse_parser import SSEEvent, SSEFraming

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class Framing(Protocol):
    name: str

    def split(self, buffer: bytes, fragment: bytes) -> tuple[list[Any], bytes]: ...

    def flush(self, buffer: bytes) -> list[Any]: ...

    def is_terminal(self, frame: Any) -> bool: ...


@runtime_checkable
class EventDecoder(Protocol):
    provider: str

    def framing(self) -> Framing: ...

    def decode_frame(self, frame: Any, model: Optional[ModelRef] = None) -> list[Chunk]: ...


# -----------------------------------------------------------------------------
# SSE JSON Decoder Base
# -----------------------------------------------------------------------------


class SSEJSONDecoder:
    """Base for providers that stream one JSON document per SSE record."""

    provider = "generic"

    def framing(self) -> Framing:
        return SSEFraming()

    def decode_frame(self, frame: Any, model: Optional[ModelRef] = None) -> list[Chunk]:
        if not isinstance(frame, SSEEvent) or frame.is_done:
            return []
        data = frame.data.strip()
        if not data:
            return []
        try:
            payload = json.loads(data)
        except ValueError as exc:
            raise DecodeError(f"Unparseable {self.provider} stream event: {exc}") from exc
        if not isinstance(payload, dict):
            return []
        return self.decode_event(payload, frame.event, model)

    def decode_event(
        self,
        payload: dict[str, Any],
        event_name: Optional[str],
        model: Optional[ModelRef],
    ) -> list[Chunk]:
        return []


def _error_meta(payload: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Return an ``error`` meta field for in-band provider error events."""
    error = payload.get("error")
    if isinstance(error, dict):
        return {"error": dict(error)}
    if isinstance(error, str) and error:
        return {"error": {"message": error}}
    return None


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

_DECODERS: dict[str, Callable[[], EventDecoder]] = {}


def register_decoder(provider: str, factory: Callable[[], EventDecoder]) -> None:
    _DECODERS[normalize_provider(provider)] = factory


def get_decoder(provider: str) -> EventDecoder:
    """Return a fresh decoder for ``provider``.

    Raises:
        ValueError: no decoder is registered under that provider id.
    """
    factory = _DECODERS.get(normalize_provider(provider))
    if factory is None:
        known = ", ".join(sorted(_DECODERS)) or "none"
        raise ValueError(f"No stream decoder registered for provider {provider!r} (known: {known})")
    return factory()


def registered_providers() -> list[str]:
    return sorted(_DECODERS)
