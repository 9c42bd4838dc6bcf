"""Error taxonomy for streaming sessions.

This module defines every exception the streaming client raises:
- StreamError: Base class carrying a machine-readable ``reason``
- TransportError / TransportLostError / HTTPStatusError: fatal transport failures
- StreamTimeoutError: a single pull or metadata wait ran out of time
- StreamCancelledError: the session was cancelled by its owner
- DecodeError / ChunkValidationError: frame or chunk rejected (contained locally)
- DrainError: failure while eagerly consuming a stream into a response

Only transport failures and cancellation change session state. Timeouts are local
to the call that hit them and decode errors never leave the session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import aiohttp

from .utils import _pretty_json, _retry_after_seconds

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUSES = frozenset({408, 425, 429})


# -----------------------------------------------------------------------------
# Base Class
# -----------------------------------------------------------------------------


class StreamError(RuntimeError):
    """Base class for all streaming failures."""

    default_reason = "stream_error"

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(message or self.reason)


# -----------------------------------------------------------------------------
# Fatal Errors (transition the session to failed)
# -----------------------------------------------------------------------------


class TransportError(StreamError):
    """The transport reported an error or failed while delivering the stream."""

    default_reason = "transport_error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.cause = cause
        if message is None and cause is not None:
            message = f"{type(cause).__name__}: {cause}" if str(cause) else type(cause).__name__
        super().__init__(message, reason=reason)

    @classmethod
    def wrap(cls, reason: Any) -> "TransportError":
        """Coerce an arbitrary transport ``error`` payload into a TransportError."""
        if isinstance(reason, TransportError):
            return reason
        if isinstance(reason, BaseException):
            return cls(cause=reason)
        return cls(str(reason) if reason is not None else None)


class TransportLostError(TransportError):
    """The transport task ended without delivering ``done`` or ``error``."""

    default_reason = "transport_lost"


class HTTPStatusError(TransportError):
    """The provider answered the streaming request with an HTTP error status."""

    default_reason = "http_status"

    def __init__(
        self,
        *,
        status: int,
        body: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        url: Optional[str] = None,
    ) -> None:
        self.status = status
        self.body = (body or "").strip()
        self.headers = dict(headers or {})
        self.url = url
        self.retry_after = _retry_after_seconds(self._header("retry-after"))
        summary = f"Provider request failed with HTTP {status}"
        if self.body:
            summary = f"{summary}: {self.body[:500]}"
        super().__init__(summary)

    def _header(self, name: str) -> Optional[str]:
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None

    @property
    def retryable(self) -> bool:
        return self.status >= 500 or self.status in _RETRYABLE_STATUSES

    @property
    def body_json(self) -> str:
        return _pretty_json(self.body)


class StreamCancelledError(StreamError):
    """The session was cancelled; no further chunks or metadata will arrive."""

    default_reason = "cancelled"


# -----------------------------------------------------------------------------
# Local Errors (never change session state)
# -----------------------------------------------------------------------------


class StreamTimeoutError(StreamError, TimeoutError):
    """A pull or metadata wait exceeded its caller-supplied timeout."""

    default_reason = "timeout"

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class DecodeError(StreamError):
    """A wire frame could not be parsed or validated."""

    default_reason = "decode_error"


class ChunkValidationError(DecodeError):
    """A decoded chunk violated the chunk invariants and was rejected."""

    default_reason = "invalid_chunk"


class DrainError(StreamError):
    """Consuming the chunk stream into a response raised an exception."""

    default_reason = "drain_error"


# -----------------------------------------------------------------------------
# Error Helper Functions
# -----------------------------------------------------------------------------


def _is_retryable_connect_error(exc: BaseException) -> bool:
    """Return True when a failed connection attempt may be retried safely."""
    if isinstance(exc, HTTPStatusError):
        return exc.retryable
    return isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError, TimeoutError))
