"""Streaming client for LLM provider HTTP APIs.

This package turns incremental provider responses into a normalized chunk
stream:
- Core infrastructure: config, errors, session logging, helpers
- Streaming subsystem: framing, session state machine, consumer stream, façade
- Provider decoders: OpenAI, Anthropic, Google, Bedrock and compatibles
- Transport and orchestration: aiohttp transport, start_stream

Imports are deferred until an attribute is first accessed via __getattr__, so
``import llm_stream_client`` stays cheap.
"""

from typing import TYPE_CHECKING

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("llm-stream-client")
except Exception:
    __version__ = "0.1.0"  # Fallback if not installed as package

# -----------------------------------------------------------------------------
# Type hints only (no runtime import)
# -----------------------------------------------------------------------------

if TYPE_CHECKING:
    from .core.config import StreamSettings
    from .core.errors import (
        ChunkValidationError,
        DecodeError,
        DrainError,
        HTTPStatusError,
        StreamCancelledError,
        StreamError,
        StreamTimeoutError,
        TransportError,
        TransportLostError,
    )
    from .core.logging_system import SessionLogger
    from .models.model import ModelRef
    from .orchestrator import start_stream
    from .providers import get_decoder, register_decoder
    from .streaming.chunk import Chunk, ContentChunk, MetaChunk, ReasoningChunk, ToolCallChunk
    from .streaming.consumer import ChunkStream
    from .streaming.session import SessionState, StreamSession
    from .streaming.stream_response import Response, StreamResponse, ToolCall
    from .transport.aiohttp_transport import AiohttpTransport, StreamRequest

# -----------------------------------------------------------------------------
# Lazy import table: name -> (module, attribute)
# -----------------------------------------------------------------------------

_LAZY_IMPORTS = {
    "StreamSettings": (".core.config", "StreamSettings"),
    "StreamError": (".core.errors", "StreamError"),
    "TransportError": (".core.errors", "TransportError"),
    "TransportLostError": (".core.errors", "TransportLostError"),
    "HTTPStatusError": (".core.errors", "HTTPStatusError"),
    "StreamCancelledError": (".core.errors", "StreamCancelledError"),
    "StreamTimeoutError": (".core.errors", "StreamTimeoutError"),
    "DecodeError": (".core.errors", "DecodeError"),
    "ChunkValidationError": (".core.errors", "ChunkValidationError"),
    "DrainError": (".core.errors", "DrainError"),
    "SessionLogger": (".core.logging_system", "SessionLogger"),
    "ModelRef": (".models.model", "ModelRef"),
    "start_stream": (".orchestrator", "start_stream"),
    "get_decoder": (".providers", "get_decoder"),
    "register_decoder": (".providers", "register_decoder"),
    "Chunk": (".streaming.chunk", "Chunk"),
    "ContentChunk": (".streaming.chunk", "ContentChunk"),
    "ReasoningChunk": (".streaming.chunk", "ReasoningChunk"),
    "ToolCallChunk": (".streaming.chunk", "ToolCallChunk"),
    "MetaChunk": (".streaming.chunk", "MetaChunk"),
    "ChunkStream": (".streaming.consumer", "ChunkStream"),
    "SessionState": (".streaming.session", "SessionState"),
    "StreamSession": (".streaming.session", "StreamSession"),
    "Response": (".streaming.stream_response", "Response"),
    "StreamResponse": (".streaming.stream_response", "StreamResponse"),
    "ToolCall": (".streaming.stream_response", "ToolCall"),
    "AiohttpTransport": (".transport.aiohttp_transport", "AiohttpTransport"),
    "StreamRequest": (".transport.aiohttp_transport", "StreamRequest"),
}

__all__ = ["__version__", *_LAZY_IMPORTS]

_cache: dict = {}


def __getattr__(name: str):
    """Lazy-load public attributes on first access."""
    if name in _cache:
        return _cache[name]

    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        import importlib
        module = importlib.import_module(module_path, __name__)
        value = getattr(module, attr_name)
        _cache[name] = value
        globals()[name] = value
        return value

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(set(globals()) | set(_LAZY_IMPORTS))
