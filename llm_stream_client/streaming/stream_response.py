"""Caller-facing streaming response.

``StreamResponse`` bundles the lazy chunk stream, the deferred metadata handle,
the cancel callback, the model reference and the originating context, and
offers convenience folds over them:

- tokens() / reasoning() / tool_calls(): lazy, filtered views of the stream
- text(): eager concatenation of tokens()
- usage() / finish_reason() / metadata(): await the deferred metadata
- extract_tool_calls(): eager tool calls with streamed argument fragments merged
- to_response(): drain everything into a single non-streaming ``Response``

tokens()/text() end quietly when the session fails; callers that need to see
the failure check metadata or use to_response(), which is fail-closed. A gap
longer than the receive timeout raises ``StreamTimeoutError`` from every view.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, Generator, Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import DrainError, StreamError
from ..core.utils import _safe_json_loads, complete_usage
from .chunk import Chunk, ContentChunk, MetaChunk, ReasoningChunk, ToolCallChunk
from .consumer import ChunkStream
from .session import SessionState

if TYPE_CHECKING:
    from ..models.model import ModelRef
    from .session import StreamSession

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Finish Reasons
# -----------------------------------------------------------------------------

FinishReason = Literal["stop", "length", "tool_use"]

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "completed": "stop",
    "length": "length",
    "max_tokens": "length",
    "max_output_tokens": "length",
    "tool_calls": "tool_use",
    "tool_use": "tool_use",
    "function_call": "tool_use",
}


def canonical_finish_reason(value: Any) -> Optional[FinishReason]:
    """Map a provider finish/stop reason onto ``stop``, ``length`` or ``tool_use``."""
    if value is None:
        return None
    key = str(value).strip().lower()
    return _FINISH_REASONS.get(key)


# -----------------------------------------------------------------------------
# Response Models
# -----------------------------------------------------------------------------


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Response(BaseModel):
    """Non-streaming response assembled from a fully drained stream."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    model: Optional[str] = None
    context: Any = None
    text: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: Optional[dict[str, Any]] = None
    finish_reason: Optional[FinishReason] = None
    provider_meta: dict[str, Any] = Field(default_factory=dict)


def _response_id() -> str:
    return f"stream_response_{secrets.token_hex(8)}"


def merge_tool_calls(chunks: Iterable[Chunk]) -> list[ToolCall]:
    """Build tool calls, replacing arguments with the JSON streamed for their index.

    Fragments that do not join into a JSON object leave the chunk's own
    arguments in place.
    """
    calls: list[ToolCallChunk] = []
    fragments: dict[Any, list[str]] = {}
    for chunk in chunks:
        if isinstance(chunk, ToolCallChunk):
            calls.append(chunk)
        elif isinstance(chunk, MetaChunk):
            args = chunk.fields.get("tool_call_args")
            if isinstance(args, Mapping):
                fragments.setdefault(args.get("index", 0), []).append(str(args.get("fragment") or ""))

    merged: list[ToolCall] = []
    for call in calls:
        arguments = dict(call.arguments)
        joined = "".join(fragments.get(call.index, ()))
        if joined:
            parsed = _safe_json_loads(joined)
            if isinstance(parsed, dict):
                arguments = parsed
            else:
                LOGGER.warning("Tool call %r streamed invalid JSON arguments; keeping %r", call.name, arguments)
        merged.append(ToolCall(id=call.call_id, name=call.name, arguments=arguments))
    return merged


# -----------------------------------------------------------------------------
# Deferred Metadata
# -----------------------------------------------------------------------------


class MetadataHandle:
    """Awaitable handle resolving to the session's finalized metadata."""

    def __init__(self, session: "StreamSession", *, timeout: Optional[float] = None) -> None:
        self._session = session
        self._timeout = timeout

    def done(self) -> bool:
        return self._session.state is not SessionState.ACTIVE

    async def result(self, timeout: Optional[float] = None) -> dict[str, Any]:
        return await self._session.await_metadata(self._timeout if timeout is None else timeout)

    def __await__(self) -> Generator[Any, None, dict[str, Any]]:
        return self.result().__await__()


# -----------------------------------------------------------------------------
# StreamResponse
# -----------------------------------------------------------------------------


class StreamResponse:
    __slots__ = ("_session", "_stream", "_metadata", "_cancel", "_model", "_context", "_receive_timeout")

    def __init__(
        self,
        session: "StreamSession",
        *,
        model: Optional["ModelRef"] = None,
        context: Any = None,
        cancel: Optional[Callable[[], None]] = None,
        receive_timeout: Optional[float] = None,
        metadata_timeout: Optional[float] = None,
    ) -> None:
        self._session = session
        self._receive_timeout = receive_timeout
        self._stream = ChunkStream(session, timeout=receive_timeout)
        self._metadata = MetadataHandle(session, timeout=metadata_timeout)
        self._cancel = cancel or session.cancel
        self._model = model
        self._context = context

    def __repr__(self) -> str:
        return f"StreamResponse(stream_id={self._session.stream_id!r}, model={self.model_spec!r})"

    @property
    def stream(self) -> ChunkStream:
        """The lazy chunk stream (raises on session failure)."""
        return self._stream

    @property
    def metadata_handle(self) -> MetadataHandle:
        return self._metadata

    @property
    def model(self) -> Optional["ModelRef"]:
        return self._model

    @property
    def model_spec(self) -> Optional[str]:
        return self._model.spec if self._model is not None else None

    @property
    def context(self) -> Any:
        return self._context

    @property
    def session(self) -> "StreamSession":
        return self._session

    # ------------------------------------------------------------------
    # Lazy views
    # ------------------------------------------------------------------

    def _quiet_stream(self) -> ChunkStream:
        return ChunkStream(self._session, timeout=self._receive_timeout, on_error="stop")

    async def tokens(self) -> AsyncGenerator[str, None]:
        async for chunk in self._quiet_stream():
            if isinstance(chunk, ContentChunk):
                yield chunk.text

    async def reasoning(self) -> AsyncGenerator[str, None]:
        async for chunk in self._quiet_stream():
            if isinstance(chunk, ReasoningChunk):
                yield chunk.text

    async def tool_calls(self) -> AsyncGenerator[ToolCallChunk, None]:
        async for chunk in self._quiet_stream():
            if isinstance(chunk, ToolCallChunk):
                yield chunk

    # ------------------------------------------------------------------
    # Folds
    # ------------------------------------------------------------------

    async def text(self) -> str:
        return "".join([token async for token in self.tokens()])

    async def metadata(self, timeout: Optional[float] = None) -> dict[str, Any]:
        return await self._metadata.result(timeout)

    async def usage(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """Return normalized token usage, or None when the provider reported none."""
        usage = (await self.metadata(timeout)).get("usage")
        return complete_usage(usage) if isinstance(usage, Mapping) else None

    async def finish_reason(self, timeout: Optional[float] = None) -> Optional[FinishReason]:
        return canonical_finish_reason((await self.metadata(timeout)).get("finish_reason"))

    async def extract_tool_calls(self) -> list[ToolCall]:
        """Drain the stream and return its tool calls with merged arguments."""
        return merge_tool_calls([chunk async for chunk in self._stream])

    async def to_response(self) -> Response:
        """Drain the stream and assemble a ``Response``.

        Raises:
            StreamError: the session failed, timed out or was cancelled.
            DrainError: processing the drained chunks raised.
        """
        try:
            chunks = [chunk async for chunk in self._stream]
            text = "".join(c.text for c in chunks if isinstance(c, ContentChunk))
            reasoning = "".join(c.text for c in chunks if isinstance(c, ReasoningChunk))
            tool_calls = merge_tool_calls(chunks)
        except StreamError:
            raise
        except Exception as exc:
            raise DrainError(f"Failed to drain stream {self._session.stream_id}: {exc}") from exc

        metadata = await self.metadata()
        usage = metadata.get("usage")
        provider_meta = {k: v for k, v in metadata.items() if k not in ("usage", "finish_reason")}
        return Response(
            id=_response_id(),
            model=self.model_spec or metadata.get("model"),
            context=self._context,
            text=text,
            reasoning=reasoning,
            tool_calls=tool_calls,
            usage=complete_usage(usage) if isinstance(usage, Mapping) else None,
            finish_reason=canonical_finish_reason(metadata.get("finish_reason")),
            provider_meta=provider_meta,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        self._cancel()

    async def __aenter__(self) -> "StreamResponse":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.cancel()
