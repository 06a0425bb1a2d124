"""
Server-Sent Events decoder for chat-completion streams.

Frames look like:

    data: {"choices":[{"delta":{"content":"Hel"}}]}

    data: {"choices":[{"delta":{}}],"usage":{"prompt_tokens":3,"cost":0.0001}}

    data: [DONE]

Network reads do not respect line boundaries, so the decoder keeps the
trailing fragment of each chunk until the rest of the line arrives.
A single malformed payload is logged and skipped; it never ends the stream.
End of stream is the byte source closing, not the [DONE] marker.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, List, Optional, Union

from backstream.models import DeltaEvent
from backstream.usage import normalize_usage

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_TOKEN = "[DONE]"


def _first_delta(payload: dict) -> Optional[dict]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    return delta if isinstance(delta, dict) else None


def _text_field(delta: Optional[dict], *keys: str) -> Optional[str]:
    if delta is None:
        return None
    for key in keys:
        value = delta.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def parse_payload(payload: Any) -> DeltaEvent:
    """Extract content/reasoning deltas and usage from one decoded JSON object."""
    delta = _first_delta(payload)
    usage = payload.get("usage")
    return DeltaEvent(
        content=_text_field(delta, "content"),
        # Some providers name the thinking channel reasoning_content.
        reasoning=_text_field(delta, "reasoning", "reasoning_content"),
        usage=normalize_usage(usage) if isinstance(usage, dict) else None,
    )


class StreamDecoder:
    """
    Incremental SSE line decoder.

    Feed raw chunks as they arrive; each call returns the delta events
    completed by that chunk. Call flush() once the byte source closes.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped = 0

    def feed(self, chunk: Union[bytes, str]) -> List[DeltaEvent]:
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        self._buffer += text
        lines = self._buffer.split("\n")
        # Last element is an incomplete line (or "" after a trailing newline).
        self._buffer = lines.pop()
        return self._process(lines)

    def flush(self) -> List[DeltaEvent]:
        """Process whatever is left once the byte source has closed."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail:
            return []
        return self._process(tail.split("\n"))

    def _process(self, lines: List[str]) -> List[DeltaEvent]:
        events: List[DeltaEvent] = []
        for line in lines:
            event = self._parse_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def _parse_line(self, line: str) -> Optional[DeltaEvent]:
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_TOKEN:
            self.done = True
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            self.skipped += 1
            logger.warning("Failed to parse SSE chunk: %s", data[:200])
            return None
        if not isinstance(payload, dict):
            self.skipped += 1
            logger.warning("Ignoring non-object SSE payload: %s", data[:200])
            return None
        return parse_payload(payload)


async def iter_deltas(
    chunks: AsyncIterable[bytes],
    decoder: Optional[StreamDecoder] = None,
) -> AsyncIterator[DeltaEvent]:
    """Decode an async byte stream into delta events, one pass, no buffering."""
    decoder = decoder or StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
