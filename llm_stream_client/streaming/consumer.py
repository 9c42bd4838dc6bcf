"""Lazy consumer stream over a streaming session.

``ChunkStream`` is a single-pass async iterator: each step pulls one chunk with
the session's receive timeout, ``halt`` ends the iteration and a session error
either propagates (``on_error="raise"``) or ends the iteration after being
logged (``on_error="stop"``). A receive timeout propagates in both modes and
leaves the iterator usable. Abandoning the iterator early never cancels the
session; cancellation belongs to the response façade.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, Optional

from ..core.errors import StreamError, StreamTimeoutError
from .chunk import Chunk

if TYPE_CHECKING:
    from .session import StreamSession

LOGGER = logging.getLogger(__name__)

ErrorMode = Literal["raise", "stop"]


class ChunkStream:
    def __init__(
        self,
        session: "StreamSession",
        *,
        timeout: Optional[float] = None,
        on_error: ErrorMode = "raise",
    ) -> None:
        if on_error not in ("raise", "stop"):
            raise ValueError(f"on_error must be 'raise' or 'stop', got {on_error!r}")
        self._session = session
        self._timeout = timeout
        self._on_error = on_error
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def __aiter__(self) -> "ChunkStream":
        return self

    async def __anext__(self) -> Chunk:
        if self._exhausted:
            raise StopAsyncIteration
        try:
            chunk = await self._session.next(self._timeout)
        except StreamTimeoutError:
            raise
        except StreamError as exc:
            if self._on_error == "stop":
                LOGGER.info("Chunk stream %s ended early: %s", self._session.stream_id, exc)
                self._exhausted = True
                raise StopAsyncIteration from exc
            self._exhausted = True
            raise
        if chunk is None:
            self._exhausted = True
            raise StopAsyncIteration
        return chunk
