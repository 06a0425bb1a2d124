"""Scripted OpenAI-compatible streaming upstream built on httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import httpx

from backstream.config import Settings
from backstream.upstream import UpstreamClient

BASE_URL = "https://upstream.test/api/v1"
DONE = b"data: [DONE]\n\n"


def sse_frame(
    content: Optional[str] = None,
    reasoning: Optional[str] = None,
    usage: Optional[Dict[str, Any]] = None,
) -> bytes:
    delta: Dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning"] = reasoning
    payload: Dict[str, Any] = {"choices": [{"delta": delta}]}
    if usage is not None:
        payload["usage"] = usage
    return f"data: {json.dumps(payload)}\n\n".encode()


def content_frames(*parts: str) -> List[bytes]:
    return [sse_frame(content=part) for part in parts]


class MockUpstream:
    """
    Replies to every chat-completion request with the scripted chunks.

    pause_after: block before yielding chunk N until ``release`` is set.
    hang: after the last chunk, never close the body.
    """

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        *,
        status_code: int = 200,
        error_body: str = "",
        pause_after: Optional[int] = None,
        hang: bool = False,
    ) -> None:
        self.chunks = list(chunks)
        self.status_code = status_code
        self.error_body = error_body
        self.pause_after = pause_after
        self.hang = hang
        self.release = asyncio.Event()
        self.requests: List[Dict[str, Any]] = []

    async def _body(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if index == self.pause_after:
                await self.release.wait()
            yield chunk
        if self.hang:
            await asyncio.sleep(3600)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(
            {
                "url": str(request.url),
                "headers": dict(request.headers),
                "json": json.loads(request.content),
            }
        )
        if self.status_code != 200:
            return httpx.Response(self.status_code, text=self.error_body)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=self._body(),
        )

    def client(self) -> UpstreamClient:
        return UpstreamClient(
            base_url=BASE_URL,
            referer="https://osschat.io",
            title="OSSChat",
            client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
        )


def make_settings(**overrides: Any) -> Settings:
    settings = Settings()
    settings.shared_api_key = "shared-key"
    settings.shared_provider = "osschat"
    settings.daily_limit_cents = 10.0
    settings.flush_interval = 5
    settings.stream_timeout_seconds = 5.0
    settings.stale_after_seconds = 300.0
    settings.max_concurrent_streams = 8
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll an async predicate until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)
