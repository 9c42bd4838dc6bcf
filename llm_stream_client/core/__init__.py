"""Core infrastructure module.

Foundation services required by all domains:
- Configuration schema (StreamSettings)
- Error hierarchy
- Session logging
- Pure utility functions
"""

from .config import StreamSettings, LOGGER
from .errors import (
    StreamError,
    TransportError,
    TransportLostError,
    HTTPStatusError,
    StreamCancelledError,
    StreamTimeoutError,
    DecodeError,
    ChunkValidationError,
    DrainError,
)
from .logging_system import SessionLogger
from .utils import (
    _safe_json_loads,
    _pretty_json,
    complete_usage,
    merge_usage,
    normalize_usage,
    redact_headers,
)

__all__ = [
    "StreamSettings",
    "LOGGER",
    "StreamError",
    "TransportError",
    "TransportLostError",
    "HTTPStatusError",
    "StreamCancelledError",
    "StreamTimeoutError",
    "DecodeError",
    "ChunkValidationError",
    "DrainError",
    "SessionLogger",
    "_safe_json_loads",
    "_pretty_json",
    "complete_usage",
    "merge_usage",
    "normalize_usage",
    "redact_headers",
]
