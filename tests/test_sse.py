from __future__ import annotations

import logging
from typing import AsyncIterator, List

import pytest

from backstream.models import DeltaEvent
from backstream.sse import StreamDecoder, iter_deltas


def _feed_all(decoder: StreamDecoder, chunks: List[bytes]) -> List[DeltaEvent]:
    events: List[DeltaEvent] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


def test_payload_split_across_chunks_yields_one_event() -> None:
    decoder = StreamDecoder()
    first = decoder.feed(b'data: {"choices":[{"delta":{"content":"He')
    assert first == []
    second = decoder.feed(b'llo"}}]}\n\n')
    assert len(second) == 1
    assert second[0].content == "Hello"
    assert decoder.flush() == []


def test_malformed_line_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    decoder = StreamDecoder()
    with caplog.at_level(logging.WARNING, logger="backstream.sse"):
        events = _feed_all(
            decoder,
            [
                b"data: not-json\n\n",
                b'data: {"choices":[{"delta":{"content":"ok"}}]}\n\n',
            ],
        )
    assert [e.content for e in events] == ["ok"]
    assert decoder.skipped == 1
    assert "Failed to parse SSE chunk" in caplog.text


def test_non_data_lines_are_ignored() -> None:
    events = _feed_all(
        StreamDecoder(),
        [
            b": OPENROUTER PROCESSING\n\n",
            b"event: message\nid: 1\n",
            b'data: {"choices":[{"delta":{"content":"a"}}]}\n\n',
            b"retry: 100\n\n",
        ],
    )
    assert [e.content for e in events] == ["a"]


def test_done_marker_is_not_an_event() -> None:
    decoder = StreamDecoder()
    events = _feed_all(
        decoder,
        [b'data: {"choices":[{"delta":{"content":"a"}}]}\n\ndata: [DONE]\n\n'],
    )
    assert len(events) == 1
    assert decoder.done is True


def test_reasoning_and_content_in_one_payload() -> None:
    events = _feed_all(
        StreamDecoder(),
        [b'data: {"choices":[{"delta":{"content":"x","reasoning":"think"}}]}\n'],
    )
    assert events == [DeltaEvent(content="x", reasoning="think")]


def test_reasoning_content_alias() -> None:
    events = _feed_all(
        StreamDecoder(),
        [b'data: {"choices":[{"delta":{"reasoning_content":"hmm"}}]}\n'],
    )
    assert events[0].reasoning == "hmm"


def test_usage_is_normalized() -> None:
    events = _feed_all(
        StreamDecoder(),
        [b'data: {"choices":[],"usage":{"promptTokens":4,"completion_tokens":2,"cost":0.001}}\n\n'],
    )
    assert len(events) == 1
    usage = events[0].usage
    assert usage is not None
    assert usage.prompt_tokens == 4
    assert usage.completion_tokens == 2
    assert usage.total_cost_usd == 0.001
    assert events[0].content is None


def test_multibyte_character_split_across_chunks() -> None:
    raw = 'data: {"choices":[{"delta":{"content":"café ☃"}}]}\n\n'.encode("utf-8")
    split = raw.index("☃".encode("utf-8")) + 1
    events = _feed_all(StreamDecoder(), [raw[:split], raw[split:]])
    assert events[0].content == "café ☃"


def test_crlf_line_endings() -> None:
    events = _feed_all(
        StreamDecoder(),
        [b'data: {"choices":[{"delta":{"content":"a"}}]}\r\n\r\n'],
    )
    assert [e.content for e in events] == ["a"]


def test_trailing_line_without_newline_is_flushed() -> None:
    decoder = StreamDecoder()
    assert decoder.feed(b'data: {"choices":[{"delta":{"content":"end"}}]}') == []
    assert [e.content for e in decoder.flush()] == ["end"]


def test_non_object_json_is_skipped() -> None:
    decoder = StreamDecoder()
    events = _feed_all(decoder, [b"data: [1, 2]\n", b"data: 42\n"])
    assert events == []
    assert decoder.skipped == 2


@pytest.mark.anyio
async def test_iter_deltas_over_async_byte_stream() -> None:
    async def chunks() -> AsyncIterator[bytes]:
        yield b'data: {"choices":[{"delta":{"content":"Hel'
        yield b'lo"}}]}\n\ndata: {"choices":[{"delta":{"content":" world"}}]}\n\n'
        yield b"data: [DONE]\n\n"

    contents = [event.content async for event in iter_deltas(chunks())]
    assert contents == ["Hello", " world"]
