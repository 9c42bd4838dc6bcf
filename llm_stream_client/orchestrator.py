"""Streaming request orchestration.

``start_stream`` wires the pieces for one request: it resolves the decoder
from the model's provider, creates the session, starts the HTTP transport,
attaches it to the session and returns the caller-facing ``StreamResponse``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

import aiohttp

from .core.config import StreamSettings
from .core.logging_system import SessionLogger
from .models.model import ModelRef
from .providers import EventDecoder, get_decoder
from .streaming.session import StreamSession
from .streaming.stream_response import StreamResponse
from .transport.aiohttp_transport import AiohttpTransport, StreamRequest

LOGGER = logging.getLogger(__name__)


def _coerce_request(request: Union[StreamRequest, Mapping[str, Any]]) -> StreamRequest:
    if isinstance(request, StreamRequest):
        return request
    if isinstance(request, Mapping):
        return StreamRequest(**request)
    raise TypeError(f"request must be a StreamRequest or mapping, got {type(request).__name__}")


async def start_stream(
    model: Union[ModelRef, str, Mapping[str, Any]],
    context: Any,
    request: Union[StreamRequest, Mapping[str, Any]],
    *,
    decoder: Optional[EventDecoder] = None,
    settings: Optional[StreamSettings] = None,
    http_session: Optional[aiohttp.ClientSession] = None,
) -> StreamResponse:
    """Dispatch a streaming request and return its response handle.

    Args:
        model: Model reference, ``"provider:model"`` string or mapping.
        context: Originating conversation; carried through to the response untouched.
        request: Fully built HTTP request (URL, auth headers, JSON body).
        decoder: Override for the provider decoder chosen from ``model``.
        settings: Streaming settings; defaults to ``StreamSettings.from_env()``.
        http_session: Shared aiohttp session; a per-request one is created otherwise.

    Returns:
        StreamResponse: Lazy stream plus deferred metadata. The transport runs in
        the background until the stream ends or ``cancel()`` is called.
    """
    settings = settings or StreamSettings.from_env()
    model_ref = ModelRef.coerce(model)
    decoder = decoder or get_decoder(model_ref.provider)
    stream_request = _coerce_request(request)

    SessionLogger.set_max_lines(settings.SESSION_LOG_MAX_LINES)
    SessionLogger.cleanup()

    session = StreamSession.from_settings(decoder, settings, model=model_ref)
    session.start()
    transport = AiohttpTransport(settings=settings, http_session=http_session)
    session.attach_transport(transport.start(session, stream_request))
    LOGGER.debug("Started stream %s for %s", session.stream_id, model_ref.spec)

    return StreamResponse(
        session,
        model=model_ref,
        context=context,
        receive_timeout=settings.RECEIVE_TIMEOUT_SECONDS,
        metadata_timeout=settings.METADATA_TIMEOUT_SECONDS,
    )
