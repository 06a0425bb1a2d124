"""UpstreamClient request shape and error mapping."""

from __future__ import annotations

import pytest

from backstream.exceptions import UpstreamError
from backstream.models import ChatMessage
from backstream.upstream import UpstreamClient
from tests.mock_upstream import DONE, MockUpstream, content_frames

MESSAGES = [ChatMessage(role="user", content="ping")]


def test_payload_is_minimal_streaming_request() -> None:
    payload = UpstreamClient.build_payload("test/model", MESSAGES)
    assert payload == {
        "model": "test/model",
        "messages": [{"role": "user", "content": "ping"}],
        "stream": True,
    }


def test_endpoint_strips_trailing_slash() -> None:
    client = UpstreamClient(base_url="https://example.test/api/v1/")
    assert client.endpoint == "https://example.test/api/v1/chat/completions"


@pytest.mark.anyio
async def test_stream_chat_yields_body_chunks() -> None:
    upstream = MockUpstream(content_frames("a", "b") + [DONE])
    client = upstream.client()

    received = b""
    async with client.stream_chat("test/model", MESSAGES, "sk-test") as chunks:
        async for chunk in chunks:
            received += chunk

    assert b'"content": "a"' in received
    assert received.endswith(DONE)
    headers = upstream.requests[0]["headers"]
    assert headers["authorization"] == "Bearer sk-test"
    assert headers["accept"] == "text/event-stream"
    assert headers["x-title"] == "OSSChat"


@pytest.mark.anyio
async def test_attribution_headers_default_to_osschat() -> None:
    upstream = MockUpstream([DONE])
    client = UpstreamClient(
        base_url="https://upstream.test/api/v1",
        client=upstream.client()._client,
    )

    async with client.stream_chat("test/model", MESSAGES, "sk-test") as chunks:
        async for _ in chunks:
            pass

    headers = upstream.requests[0]["headers"]
    assert headers["http-referer"] == "https://osschat.io"
    assert headers["x-title"] == "OSSChat"


@pytest.mark.anyio
async def test_attribution_headers_can_be_disabled() -> None:
    upstream = MockUpstream([DONE])
    client = UpstreamClient(
        base_url="https://upstream.test/api/v1",
        referer=None,
        title=None,
        client=upstream.client()._client,
    )

    async with client.stream_chat("test/model", MESSAGES, "sk-test") as chunks:
        async for _ in chunks:
            pass

    headers = upstream.requests[0]["headers"]
    assert "http-referer" not in headers
    assert "x-title" not in headers


@pytest.mark.anyio
async def test_error_status_raises_with_body() -> None:
    upstream = MockUpstream(status_code=401, error_body="bad key")
    client = upstream.client()

    with pytest.raises(UpstreamError) as exc_info:
        async with client.stream_chat("test/model", MESSAGES, "sk-test"):
            pass

    err = exc_info.value
    assert err.message == "OpenRouter API error: 401 - bad key"
    assert err.status_code == 401
    assert err.is_auth_error
    assert not err.is_rate_limited


@pytest.mark.anyio
async def test_rate_limit_is_flagged() -> None:
    upstream = MockUpstream(status_code=429, error_body="slow down")

    with pytest.raises(UpstreamError) as exc_info:
        async with upstream.client().stream_chat("test/model", MESSAGES, "sk-test"):
            pass

    assert exc_info.value.is_rate_limited
