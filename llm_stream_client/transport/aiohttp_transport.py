"""HTTP transport that feeds a streaming session.

The transport owns nothing but the HTTP exchange: it sends the caller-built
request, then delivers lifecycle events to the session in order (status,
headers, data fragments, then exactly one of done/error). Each ``feed`` is
awaited, so the session's deferred acknowledgements throttle the socket reads.

Connection establishment is retried with tenacity before the first event is
fed; once bytes have been delivered the stream is never replayed.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from ..core.config import StreamSettings
from ..core.errors import HTTPStatusError, TransportError, _is_retryable_connect_error
from ..core.logging_system import SessionLogger
from ..core.utils import redact_headers
from ..streaming.session import StreamSession

LOGGER = SessionLogger.get_logger(__name__)

_MAX_RETRY_AFTER_SECONDS = 30.0


@dataclass(slots=True)
class StreamRequest:
    """A fully built provider request; bodies and auth headers come from the caller."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    method: str = "POST"
    params: Optional[dict[str, str]] = None


class _RetryAfterWait:
    """Exponential backoff that honours a provider ``Retry-After`` hint."""

    def __init__(self) -> None:
        self._backoff = wait_exponential(multiplier=0.5, min=0.5, max=4)

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, HTTPStatusError) and exc.retry_after is not None:
            return min(exc.retry_after, _MAX_RETRY_AFTER_SECONDS)
        return self._backoff(retry_state)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
    LOGGER.warning(
        "Stream connection attempt %d failed (%s); retrying",
        retry_state.attempt_number,
        exc,
    )


class AiohttpTransport:
    def __init__(
        self,
        *,
        settings: Optional[StreamSettings] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._settings = settings or StreamSettings()
        self._http_session = http_session

    def _create_http_session(self) -> aiohttp.ClientSession:
        """Return a fresh ClientSession with sane defaults for per-request use."""
        settings = self._settings
        connector = aiohttp.TCPConnector(
            limit=50,
            limit_per_host=10,
            keepalive_timeout=75,
            ttl_dns_cache=300,
        )
        connect_timeout = float(settings.HTTP_CONNECT_TIMEOUT_SECONDS)
        total_timeout = float(settings.HTTP_TOTAL_TIMEOUT_SECONDS) if settings.HTTP_TOTAL_TIMEOUT_SECONDS else None
        sock_read = float(settings.HTTP_SOCK_READ_SECONDS) if total_timeout is None else None
        timeout = aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout, sock_read=sock_read)
        LOGGER.debug(
            "HTTP timeouts: connect=%ss total=%s sock_read=%s",
            connect_timeout,
            total_timeout if total_timeout is not None else "disabled",
            sock_read if sock_read is not None else "disabled",
        )
        return aiohttp.ClientSession(connector=connector, timeout=timeout, json_serialize=json.dumps)

    def start(self, session: StreamSession, request: StreamRequest) -> asyncio.Task:
        """Spawn the transport task for ``session``; the caller attaches it."""
        loop = asyncio.get_running_loop()
        return loop.create_task(self.run(session, request), name=f"stream-transport-{session.stream_id}")

    async def run(self, session: StreamSession, request: StreamRequest) -> None:
        with SessionLogger.bind(session.stream_id, level=self._settings.log_level_value):
            owns_http = self._http_session is None
            http = self._http_session or self._create_http_session()
            try:
                await self._stream(http, session, request)
            finally:
                if owns_http:
                    await http.close()

    async def _stream(self, http: aiohttp.ClientSession, session: StreamSession, request: StreamRequest) -> None:
        LOGGER.debug("%s %s headers=%s", request.method, request.url, redact_headers(request.headers))
        try:
            response = await self._connect(http, request)
        except HTTPStatusError as exc:
            LOGGER.error("Provider rejected stream request: HTTP %s", exc.status)
            await session.feed_status(exc.status)
            await session.feed_headers(exc.headers)
            await session.feed_error(exc)
            return
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            LOGGER.error("Stream connection failed: %s", exc)
            await session.feed_error(TransportError(cause=exc))
            return

        async with response:
            await session.feed_status(response.status)
            await session.feed_headers(list(response.headers.items()))
            try:
                async for fragment in response.content.iter_chunked(self._settings.READ_CHUNK_BYTES):
                    if not await session.feed_data(fragment):
                        LOGGER.debug("Session stopped accepting data; closing stream")
                        return
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                LOGGER.error("Stream interrupted: %s", exc)
                await session.feed_error(TransportError(cause=exc))
                return
        await session.feed_done()

    async def _connect(self, http: aiohttp.ClientSession, request: StreamRequest) -> aiohttp.ClientResponse:
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self._settings.CONNECT_MAX_RETRIES),
            wait=_RetryAfterWait(),
            retry=retry_if_exception(_is_retryable_connect_error),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                response = await http.request(
                    request.method,
                    request.url,
                    json=request.json,
                    headers=request.headers,
                    params=request.params,
                )
                if response.status >= 400:
                    try:
                        body = await response.text()
                    finally:
                        response.release()
                    raise HTTPStatusError(
                        status=response.status,
                        body=body,
                        headers=dict(response.headers),
                        url=request.url,
                    )
                return response
        raise TransportError("stream connection retries exhausted")
