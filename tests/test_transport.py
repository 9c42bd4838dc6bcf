"""Tests for the aiohttp transport and start_stream orchestration.

HTTP traffic is mocked with aioresponses; the transport runs as a real
background task feeding a real session.
"""

from __future__ import annotations

import base64
import json

import aiohttp
import pytest
from aioresponses import aioresponses

from conftest import DONE, openai_delta, sse
from llm_stream_client.core.config import StreamSettings
from llm_stream_client.core.errors import HTTPStatusError, TransportError
from llm_stream_client.orchestrator import start_stream
from llm_stream_client.providers import OpenAIChatDecoder
from llm_stream_client.streaming.event_stream import encode_event_stream_message
from llm_stream_client.streaming.session import SessionState, StreamSession
from llm_stream_client.transport import AiohttpTransport, StreamRequest

URL = "https://api.example.test/v1/chat/completions"
BEDROCK_URL = "https://bedrock-runtime.us-east-1.amazonaws.com/model/claude/invoke-with-response-stream"
CONTEXT = [{"role": "user", "content": "hello"}]


def _request() -> dict:
    return {
        "url": URL,
        "headers": {"Authorization": "Bearer sk-test"},
        "json": {"model": "gpt-4o", "stream": True, "messages": CONTEXT},
    }


def _openai_body() -> bytes:
    final = {
        "id": "chatcmpl-7",
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 2, "completion_tokens": 3, "total_tokens": 5},
    }
    return openai_delta("Hello") + openai_delta(" there") + sse(final) + DONE


def _bedrock(document: dict) -> bytes:
    wrapped = json.dumps({"bytes": base64.b64encode(json.dumps(document).encode()).decode()})
    return encode_event_stream_message(wrapped.encode(), {":event-type": "chunk", ":message-type": "event"})


def _settings(**overrides) -> StreamSettings:
    return StreamSettings(RECEIVE_TIMEOUT_SECONDS=2, METADATA_TIMEOUT_SECONDS=2, **overrides)


# -----------------------------------------------------------------------------
# start_stream
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_stream_end_to_end() -> None:
    with aioresponses() as mock_http:
        mock_http.post(
            URL,
            body=_openai_body(),
            headers={"Content-Type": "text/event-stream", "X-Request-Id": "req-1"},
            status=200,
        )

        response = await start_stream("openai:gpt-4o", CONTEXT, _request(), settings=_settings())
        result = await response.to_response()

    assert result.text == "Hello there"
    assert result.model == "openai:gpt-4o"
    assert result.context == CONTEXT
    assert result.finish_reason == "stop"
    assert result.usage["total_tokens"] == 5
    assert result.provider_meta["status"] == 200
    assert result.provider_meta["headers"]["x-request-id"] == "req-1"


@pytest.mark.asyncio
async def test_start_stream_bedrock_event_stream_in_small_reads() -> None:
    body = b"".join(
        [
            _bedrock({"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 10, "output_tokens": 1}}}),
            _bedrock({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}}),
            _bedrock({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " world"}}),
            _bedrock({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 25}}),
            _bedrock({"type": "message_stop"}),
        ]
    )

    with aioresponses() as mock_http:
        mock_http.post(
            BEDROCK_URL,
            body=body,
            headers={"Content-Type": "application/vnd.amazon.eventstream"},
            status=200,
        )

        response = await start_stream(
            "bedrock:anthropic.claude-3-haiku-20240307-v1:0",
            CONTEXT,
            StreamRequest(url=BEDROCK_URL, json={"messages": CONTEXT}),
            settings=_settings(READ_CHUNK_BYTES=64),
        )
        text = await response.text()
        usage = await response.usage()
        finish = await response.finish_reason()

    assert text == "Hello world"
    assert finish == "stop"
    assert usage["input_tokens"] == 10
    assert usage["output_tokens"] == 25
    assert usage["total_tokens"] == 35
    assert response.model_spec == "amazon_bedrock:anthropic.claude-3-haiku-20240307-v1:0"


@pytest.mark.asyncio
async def test_start_stream_keeps_shared_http_session_open() -> None:
    with aioresponses() as mock_http:
        mock_http.post(URL, body=_openai_body(), status=200)

        async with aiohttp.ClientSession() as http:
            response = await start_stream("openai:gpt-4o", CONTEXT, _request(), settings=_settings(), http_session=http)
            assert await response.text() == "Hello there"
            await response.session.transport
            assert not http.closed


@pytest.mark.asyncio
async def test_start_stream_rejects_bad_inputs() -> None:
    with pytest.raises(ValueError):
        await start_stream("carrier-pigeon:v1", CONTEXT, _request(), settings=_settings())
    with pytest.raises(ValueError):
        await start_stream("no-provider", CONTEXT, _request(), settings=_settings())
    with pytest.raises(TypeError):
        await start_stream("openai:gpt-4o", CONTEXT, 42, settings=_settings())  # type: ignore[arg-type]


# -----------------------------------------------------------------------------
# Connection Retries and Failures
# -----------------------------------------------------------------------------


async def _run_transport(settings: StreamSettings, request: StreamRequest) -> StreamSession:
    session = StreamSession.from_settings(OpenAIChatDecoder(), settings)
    transport = AiohttpTransport(settings=settings)
    task = transport.start(session, request)
    session.attach_transport(task)
    await task
    return session


@pytest.mark.asyncio
async def test_retries_server_error_then_streams() -> None:
    with aioresponses() as mock_http:
        mock_http.post(URL, status=503, body="busy", headers={"Retry-After": "0"})
        mock_http.post(URL, status=200, body=_openai_body())

        session = await _run_transport(_settings(CONNECT_MAX_RETRIES=2), StreamRequest(url=URL, json={}))

    assert session.state is SessionState.COMPLETED
    assert (await session.await_metadata(1))["status"] == 200


@pytest.mark.asyncio
async def test_client_error_status_is_not_retried() -> None:
    with aioresponses() as mock_http:
        mock_http.post(URL, status=401, body='{"error": {"message": "invalid api key"}}')

        session = await _run_transport(_settings(CONNECT_MAX_RETRIES=3), StreamRequest(url=URL, json={}))

    assert session.state is SessionState.FAILED
    with pytest.raises(HTTPStatusError) as exc:
        await session.next(1)
    assert exc.value.status == 401
    assert exc.value.retryable is False
    assert "invalid api key" in exc.value.body
    assert exc.value.url == URL


@pytest.mark.asyncio
async def test_connection_failure_fails_session() -> None:
    with aioresponses() as mock_http:
        mock_http.post(URL, exception=aiohttp.ClientConnectionError("connection refused"))

        session = await _run_transport(_settings(CONNECT_MAX_RETRIES=1), StreamRequest(url=URL, json={}))

    with pytest.raises(TransportError) as exc:
        await session.next(1)
    assert isinstance(exc.value.cause, aiohttp.ClientConnectionError)
    assert session.state is SessionState.FAILED
