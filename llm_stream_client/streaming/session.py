"""Streaming session state machine.

One ``StreamSession`` exists per in-flight streaming request. It owns:
- the pending-chunk queue (FIFO, arrival order)
- the carry-over buffer of the active framing
- the completion status (active, completed, failed)
- the metadata accumulator
- the backpressure gate (deferred transport acknowledgements)

All of that state is mutated only by the session's owner task, which drains a
serialized ``asyncio.Queue`` inbox. Transport events, consumer pulls, metadata
requests, transport exit notifications and cancellation are all messages, so
the session needs no locks.

Backpressure: ``feed`` resolves once the owner has processed the event. A data
event that leaves more than ``high_watermark`` chunks queued is acknowledged
only after consumers drain the queue back to the watermark, so a transport
that awaits each ``feed`` keeps the queue bounded.
"""

from __future__ import annotations

import asyncio
import copy
import enum
import secrets
from collections import deque
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..core.config import (
    DEFAULT_HIGH_WATERMARK,
    DEFAULT_METADATA_TIMEOUT_SECONDS,
    DEFAULT_RECEIVE_TIMEOUT_SECONDS,
    StreamSettings,
)
from ..core.errors import (
    ChunkValidationError,
    StreamCancelledError,
    StreamError,
    StreamTimeoutError,
    TransportError,
    TransportLostError,
)
from ..core.logging_system import SessionLogger
from ..core.utils import merge_usage, normalize_usage
from .chunk import Chunk, MetaChunk, validate_chunk
from .event_stream import MalformedFrame

if TYPE_CHECKING:
    from ..models.model import ModelRef
    from ..providers.base import EventDecoder, Framing

LOGGER = SessionLogger.get_logger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

STATUS = "status"
HEADERS = "headers"
DATA = "data"
DONE = "done"
ERROR = "error"

TRANSPORT_EVENTS = frozenset({STATUS, HEADERS, DATA, DONE, ERROR})

# Meta fields consumed by the response façade or the session itself, never
# copied into the metadata accumulator.
_BOOKKEEPING_FIELDS = frozenset({"tool_call_args", "terminal"})


class SessionState(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


def _resolve(future: asyncio.Future, result: Any) -> None:
    if not future.done():
        future.set_result(result)


def _fragment_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value or b"")


def _reject(future: asyncio.Future, error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


def _headers_dict(headers: Any) -> dict[str, str]:
    """Return lower-cased header names; repeated headers are comma-joined."""
    items = headers.items() if isinstance(headers, Mapping) else (headers or ())
    merged: dict[str, str] = {}
    for name, value in items:
        key = str(name).lower()
        merged[key] = f"{merged[key]}, {value}" if key in merged else str(value)
    return merged


# -----------------------------------------------------------------------------
# StreamSession
# -----------------------------------------------------------------------------


class StreamSession:
    """Single-owner state machine behind one streaming response."""

    def __init__(
        self,
        decoder: "EventDecoder",
        *,
        model: Optional["ModelRef"] = None,
        framing: Optional["Framing"] = None,
        high_watermark: int = DEFAULT_HIGH_WATERMARK,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT_SECONDS,
        metadata_timeout: float = DEFAULT_METADATA_TIMEOUT_SECONDS,
        stream_id: Optional[str] = None,
        log_level: Optional[int] = None,
    ) -> None:
        if high_watermark < 1:
            raise ValueError("high_watermark must be >= 1")
        self.stream_id = stream_id or f"stream_{secrets.token_hex(8)}"
        self.model = model
        self.high_watermark = high_watermark
        self.receive_timeout = receive_timeout
        self.metadata_timeout = metadata_timeout
        self.log_level = log_level
        self._decoder = decoder
        self._framing = framing if framing is not None else decoder.framing()

        self._inbox: asyncio.Queue[tuple[Any, ...]] = asyncio.Queue()
        self._owner: Optional[asyncio.Task] = None
        self._transport: Optional[asyncio.Task] = None
        self._cancel_requested = False

        # Owned by the owner task
        self._state = SessionState.ACTIVE
        self._error: Optional[StreamError] = None
        self._pending: deque[Chunk] = deque()
        self._buffer = b""
        self._metadata: dict[str, Any] = {}
        self._final_metadata: Optional[dict[str, Any]] = None
        self._waiters: deque[asyncio.Future] = deque()
        self._metadata_waiters: list[asyncio.Future] = []
        self._deferred_acks: deque[asyncio.Future] = deque()
        self._decode_errors = 0
        self._max_pending = 0

    @classmethod
    def from_settings(
        cls,
        decoder: "EventDecoder",
        settings: StreamSettings,
        **kwargs: Any,
    ) -> "StreamSession":
        kwargs.setdefault("high_watermark", settings.HIGH_WATERMARK)
        kwargs.setdefault("receive_timeout", settings.RECEIVE_TIMEOUT_SECONDS)
        kwargs.setdefault("metadata_timeout", settings.METADATA_TIMEOUT_SECONDS)
        kwargs.setdefault("log_level", settings.log_level_value)
        return cls(decoder, **kwargs)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> Optional[StreamError]:
        return self._error

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def max_pending_observed(self) -> int:
        """Largest pending-queue length seen so far."""
        return self._max_pending

    @property
    def decode_errors(self) -> int:
        return self._decode_errors

    @property
    def transport(self) -> Optional[asyncio.Task]:
        return self._transport

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def log_events(self) -> list[dict[str, Any]]:
        """Return the structured log events captured for this stream."""
        return SessionLogger.events(self.stream_id)

    # ------------------------------------------------------------------
    # Owner task
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the owner task. Requires a running event loop; idempotent."""
        if self._owner is None:
            loop = asyncio.get_running_loop()
            self._owner = loop.create_task(self._run(), name=f"stream-session-{self.stream_id}")

    def _post(self, message: tuple[Any, ...]) -> None:
        if self._owner is not None and self._owner.done():
            # The owner exits once terminal and drained; later messages are
            # answered inline on the loop thread.
            self._handle(message)
        else:
            self._inbox.put_nowait(message)

    async def _run(self) -> None:
        with SessionLogger.bind(self.stream_id, level=self.log_level):
            LOGGER.debug("Stream session started (decoder=%s, high_watermark=%d)", type(self._decoder).__name__, self.high_watermark)
            while True:
                message = await self._inbox.get()
                try:
                    self._handle(message)
                except Exception as exc:
                    LOGGER.exception("Stream session failed while handling %r", message[0])
                    self._fail(StreamError(f"session error: {exc}", reason="session_error"))
                    if message[0] == "event":
                        _resolve(message[3], False)
                    self._dispatch()
                if self._state is not SessionState.ACTIVE and not self._pending and self._inbox.empty():
                    break
            LOGGER.debug("Stream session owner exiting (state=%s)", self._state.value)

    def _handle(self, message: tuple[Any, ...]) -> None:
        tag = message[0]
        if tag == "event":
            _, kind, value, ack = message
            self._on_transport_event(kind, value, ack)
        elif tag == "pull":
            self._waiters.append(message[1])
            self._dispatch()
        elif tag == "withdraw":
            self._on_withdraw(message[1])
        elif tag == "metadata":
            self._on_metadata(message[1])
        elif tag == "transport_exit":
            self._on_transport_exit(message[1])
        elif tag == "cancel":
            self._on_cancel()
        else:
            LOGGER.warning("Ignoring unknown session message: %r", tag)

    # ------------------------------------------------------------------
    # Transport side
    # ------------------------------------------------------------------

    async def feed(self, kind: str, value: Any = None) -> bool:
        """Deliver one transport lifecycle event and wait for its acknowledgement.

        Returns:
            bool: False when the event was ignored because the session had
            already reached a terminal state.
        """
        if kind not in TRANSPORT_EVENTS:
            raise ValueError(f"Unknown transport event: {kind!r}")
        self.start()
        ack = asyncio.get_running_loop().create_future()
        self._post(("event", kind, value, ack))
        return await ack

    async def feed_status(self, status: int) -> bool:
        return await self.feed(STATUS, status)

    async def feed_headers(self, headers: Any) -> bool:
        return await self.feed(HEADERS, headers)

    async def feed_data(self, fragment: bytes | str) -> bool:
        return await self.feed(DATA, fragment)

    async def feed_done(self) -> bool:
        return await self.feed(DONE)

    async def feed_error(self, reason: Any) -> bool:
        return await self.feed(ERROR, reason)

    def attach_transport(self, task: asyncio.Task) -> None:
        """Monitor ``task``; if it ends before ``done``/``error`` the session fails."""
        self.start()
        self._transport = task
        if self._cancel_requested:
            task.cancel()
        task.add_done_callback(self._on_transport_done)

    def _on_transport_done(self, task: asyncio.Task) -> None:
        if not task.cancelled():
            task.exception()
        self._post(("transport_exit", task))

    def _on_transport_event(self, kind: str, value: Any, ack: asyncio.Future) -> None:
        if self._state is not SessionState.ACTIVE or self._cancel_requested:
            LOGGER.debug("Ignoring %s event (state=%s)", kind, self._state.value)
            _resolve(ack, False)
            return

        if kind == STATUS:
            self._metadata["status"] = int(value)
        elif kind == HEADERS:
            self._metadata["headers"] = _headers_dict(value)
        elif kind == DATA:
            frames, self._buffer = self._framing.split(self._buffer, _fragment_bytes(value))
            self._process_frames(frames)
        elif kind == DONE:
            leftover, self._buffer = self._buffer, b""
            self._process_frames(self._framing.flush(leftover))
            self._complete()
        elif kind == ERROR:
            self._fail(TransportError.wrap(value))

        self._dispatch()
        if kind == DATA and self._state is SessionState.ACTIVE and len(self._pending) > self.high_watermark:
            LOGGER.debug("Backpressure engaged: %d pending > %d", len(self._pending), self.high_watermark)
            self._deferred_acks.append(ack)
        else:
            _resolve(ack, True)

    def _process_frames(self, frames: list[Any]) -> None:
        for frame in frames:
            if self._state is not SessionState.ACTIVE:
                break
            if isinstance(frame, MalformedFrame):
                self._record_decode_error(f"malformed frame ({frame.reason}, {len(frame.raw)} bytes)")
                continue
            try:
                chunks = self._decoder.decode_frame(frame, self.model)
            except Exception as exc:
                self._record_decode_error(f"{type(exc).__name__}: {exc}")
                continue

            terminal = False
            for chunk in chunks or ():
                try:
                    validate_chunk(chunk)
                except ChunkValidationError as exc:
                    self._record_decode_error(str(exc))
                    continue
                if isinstance(chunk, MetaChunk):
                    terminal = self._merge_meta(chunk.fields) or terminal
                self._pending.append(chunk)
            self._max_pending = max(self._max_pending, len(self._pending))

            if terminal or self._framing.is_terminal(frame):
                self._complete()

    def _record_decode_error(self, detail: str) -> None:
        self._decode_errors += 1
        self._metadata["decode_errors"] = self._decode_errors
        LOGGER.warning("Skipping undecodable stream data: %s", detail)

    def _merge_meta(self, fields: Mapping[str, Any]) -> bool:
        for key, value in fields.items():
            if key in _BOOKKEEPING_FIELDS:
                continue
            if key == "usage" and isinstance(value, Mapping):
                normalized = normalize_usage(value)
                usage = merge_usage(copy.deepcopy(self._metadata.get("usage") or {}), normalized)
                if "total_tokens" not in normalized and "input_tokens" in usage and "output_tokens" in usage:
                    usage["total_tokens"] = usage["input_tokens"] + usage["output_tokens"]
                self._metadata["usage"] = usage
            else:
                self._metadata[key] = value
        return bool(fields.get("terminal"))

    def _on_transport_exit(self, task: asyncio.Task) -> None:
        if task is not self._transport or self._state is not SessionState.ACTIVE:
            return
        cause = None if task.cancelled() else task.exception()
        self._fail(TransportLostError("transport ended before the stream finished", cause=cause))
        self._dispatch()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _complete(self) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        self._state = SessionState.COMPLETED
        self._final_metadata = copy.deepcopy(self._metadata)
        LOGGER.debug("Stream completed (%d chunks pending)", len(self._pending))

    def _fail(self, error: StreamError) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        self._state = SessionState.FAILED
        self._error = error
        self._final_metadata = copy.deepcopy(self._metadata)
        if isinstance(error, StreamCancelledError):
            LOGGER.debug("Stream cancelled")
        else:
            LOGGER.error("Stream failed (%s): %s", error.reason, error)

    def _dispatch(self) -> None:
        """Hand pending chunks to waiting consumers and settle what the state allows."""
        while self._waiters and self._pending:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            waiter.set_result(self._pending.popleft())

        if self._state is not SessionState.ACTIVE:
            if not self._pending:
                while self._waiters:
                    self._reply_terminal(self._waiters.popleft())
            metadata_waiters, self._metadata_waiters = self._metadata_waiters, []
            for waiter in metadata_waiters:
                self._reply_metadata(waiter)

        if self._deferred_acks and (
            self._state is not SessionState.ACTIVE or len(self._pending) <= self.high_watermark
        ):
            while self._deferred_acks:
                _resolve(self._deferred_acks.popleft(), True)

    def _reply_terminal(self, waiter: asyncio.Future) -> None:
        if self._state is SessionState.COMPLETED:
            _resolve(waiter, None)
        else:
            _reject(waiter, self._error)

    def _reply_metadata(self, waiter: asyncio.Future) -> None:
        if self._state is SessionState.COMPLETED:
            _resolve(waiter, self._final_metadata)
        else:
            _reject(waiter, self._error)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def next(self, timeout: Optional[float] = None) -> Optional[Chunk]:
        """Pull the oldest pending chunk.

        Returns:
            Chunk, or None once the queue is drained and the stream completed.

        Raises:
            StreamTimeoutError: nothing arrived within ``timeout`` (state untouched).
            StreamError: the session failed or was cancelled (same error every call).

        Concurrent callers each receive distinct chunks. A chunk handed to a
        caller that timed out or was cancelled goes back to the front of the
        queue; if another caller already took a later chunk, the two are
        delivered out of order across callers. That race is accepted.
        """
        wait = self.receive_timeout if timeout is None else timeout
        self.start()
        waiter = asyncio.get_running_loop().create_future()
        self._post(("pull", waiter))
        try:
            done, _ = await asyncio.wait({waiter}, timeout=wait)
        except asyncio.CancelledError:
            self._post(("withdraw", waiter))
            raise
        if not done:
            self._post(("withdraw", waiter))
            raise StreamTimeoutError("next", wait)
        return waiter.result()

    def _on_withdraw(self, waiter: asyncio.Future) -> None:
        if waiter in self._waiters:
            self._waiters.remove(waiter)
            waiter.cancel()
            return
        if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
            chunk = waiter.result()
            if chunk is not None:
                # Delivered to a caller that already gave up; put it back in front.
                self._pending.appendleft(chunk)
                self._dispatch()

    async def await_metadata(self, timeout: Optional[float] = None) -> dict[str, Any]:
        """Wait for the session to leave ``active`` and return the finalized metadata.

        Raises:
            StreamTimeoutError: the session is still active after ``timeout``.
            StreamError: the terminal error of a failed or cancelled session.
        """
        wait = self.metadata_timeout if timeout is None else timeout
        self.start()
        waiter = asyncio.get_running_loop().create_future()
        self._post(("metadata", waiter))
        try:
            done, _ = await asyncio.wait({waiter}, timeout=wait)
        finally:
            if not waiter.done():
                waiter.cancel()
        if not done:
            raise StreamTimeoutError("await_metadata", wait)
        return waiter.result()

    def _on_metadata(self, waiter: asyncio.Future) -> None:
        if self._state is SessionState.ACTIVE:
            self._metadata_waiters = [w for w in self._metadata_waiters if not w.done()]
            self._metadata_waiters.append(waiter)
        else:
            self._reply_metadata(waiter)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the transport and release every waiting consumer. Idempotent."""
        if self._cancel_requested:
            return
        self._cancel_requested = True
        if self._transport is not None and not self._transport.done():
            self._transport.cancel()
        self._post(("cancel",))

    def _on_cancel(self) -> None:
        if self._state is SessionState.ACTIVE:
            self._pending.clear()
            self._buffer = b""
            self._fail(StreamCancelledError("stream was cancelled"))
        elif self._pending:
            LOGGER.debug("Discarding %d undelivered chunks on cancel", len(self._pending))
            self._pending.clear()
        self._dispatch()
