"""
Streaming client for an OpenAI-compatible chat-completion endpoint.

One httpx.AsyncClient is shared by every job so concurrent streams reuse
the same connection pool. The per-request bearer credential varies per
job (shared tier key or the caller's own key), so it is sent per request
rather than configured on the client.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional

import httpx

from backstream.exceptions import EmptyResponse, UpstreamError
from backstream.models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_REFERER = "https://osschat.io"
DEFAULT_TITLE = "OSSChat"


class UpstreamClient:
    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        referer: Optional[str] = DEFAULT_REFERER,
        title: Optional[str] = DEFAULT_TITLE,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._referer = referer
        self._title = title
        self._owns_client = client is None
        # Read timeout is unbounded; the job's absolute budget bounds the call.
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=30.0)
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self, api_key: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {api_key}",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    @staticmethod
    def build_payload(model: str, messages: Iterable[ChatMessage]) -> Dict[str, object]:
        return {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": True,
        }

    @asynccontextmanager
    async def stream_chat(
        self,
        model: str,
        messages: Iterable[ChatMessage],
        api_key: str,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open a streaming completion and yield its raw body chunks.

        Raises:
            UpstreamError: Non-2xx status; message carries status and body.
            EmptyResponse: The response has no body to read.
        """
        async with self._client.stream(
            "POST",
            self.endpoint,
            json=self.build_payload(model, messages),
            headers=self._headers(api_key),
        ) as response:
            if response.status_code < 200 or response.status_code >= 300:
                body = (await response.aread()).decode("utf-8", errors="replace")
                logger.warning(
                    "Upstream returned %d for model %s", response.status_code, model
                )
                raise UpstreamError(response.status_code, body)
            if response.status_code == 204:
                raise EmptyResponse("No response body")
            yield response.aiter_bytes()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
