"""Streaming orchestration subsystem.

This package contains the streaming core:
- chunk: Normalized chunk variants and validation
- sse_parser: Server-Sent Events framing
- event_stream: AWS binary event-stream framing
- session: Single-owner session state machine with backpressure
- consumer: Lazy, single-pass chunk stream
- stream_response: Caller-facing façade and response assembly
"""

from .chunk import (
    Chunk,
    ContentChunk,
    MetaChunk,
    ReasoningChunk,
    ToolCallChunk,
    validate_chunk,
)
from .consumer import ChunkStream
from .event_stream import (
    EventStreamFraming,
    EventStreamMessage,
    EventStreamResult,
    MalformedFrame,
    encode_event_stream_message,
    parse_event_stream,
)
from .session import SessionState, StreamSession
from .sse_parser import SSEEvent, SSEFraming, is_terminal, iter_sse_events, parse_sse, parse_sse_bytes
from .stream_response import (
    MetadataHandle,
    Response,
    StreamResponse,
    ToolCall,
    canonical_finish_reason,
    merge_tool_calls,
)

__all__ = [
    "Chunk",
    "ContentChunk",
    "MetaChunk",
    "ReasoningChunk",
    "ToolCallChunk",
    "validate_chunk",
    "ChunkStream",
    "EventStreamFraming",
    "EventStreamMessage",
    "EventStreamResult",
    "MalformedFrame",
    "encode_event_stream_message",
    "parse_event_stream",
    "SessionState",
    "StreamSession",
    "SSEEvent",
    "SSEFraming",
    "is_terminal",
    "iter_sse_events",
    "parse_sse",
    "parse_sse_bytes",
    "MetadataHandle",
    "Response",
    "StreamResponse",
    "ToolCall",
    "canonical_finish_reason",
    "merge_tool_calls",
]
