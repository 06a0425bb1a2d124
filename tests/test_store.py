from __future__ import annotations

import pytest

from backstream.models import Chat, ChatMessage, JobStatus, StreamJob
from backstream.store import InMemoryJobStore, generate_job_id


def _job(chat_id: str = "c1", user_id: str = "u1", **fields) -> StreamJob:
    return StreamJob(
        id=generate_job_id(),
        chat_id=chat_id,
        user_id=user_id,
        client_message_id="m1",
        model="test-model",
        provider="osschat",
        messages=[ChatMessage(role="user", content="hi")],
        **fields,
    )


@pytest.mark.anyio
async def test_insert_job_if_idle_rejects_second_active_job() -> None:
    store = InMemoryJobStore()
    first = _job()
    assert await store.insert_job_if_idle(first) is True
    assert await store.insert_job_if_idle(_job()) is False

    await store.update_job(first.id, status=JobStatus.COMPLETED)
    assert await store.insert_job_if_idle(_job()) is True


@pytest.mark.anyio
async def test_terminal_job_is_immutable() -> None:
    store = InMemoryJobStore()
    job = _job()
    await store.insert_job_if_idle(job)
    await store.update_job(job.id, status=JobStatus.ERROR, error="boom")

    assert await store.update_job(job.id, content="late") is None
    stored = await store.get_job(job.id)
    assert stored is not None
    assert stored.content == ""
    assert stored.error == "boom"


@pytest.mark.anyio
async def test_reads_return_copies() -> None:
    store = InMemoryJobStore()
    job = _job()
    await store.insert_job_if_idle(job)

    copy = await store.get_job(job.id)
    assert copy is not None
    copy.content = "mutated"
    stored = await store.get_job(job.id)
    assert stored is not None
    assert stored.content == ""


@pytest.mark.anyio
async def test_upsert_message_is_keyed_by_client_message_id() -> None:
    store = InMemoryJobStore()
    first = await store.upsert_message("c1", "m1", "draft", None)
    second = await store.upsert_message("c1", "m1", "final", "why")
    await store.upsert_message("c1", "m2", "other", None)

    assert first.id == second.id
    messages = await store.list_messages("c1")
    assert [(m.client_message_id, m.content) for m in messages] == [
        ("m1", "final"),
        ("m2", "other"),
    ]


@pytest.mark.anyio
async def test_update_chat_and_stats() -> None:
    store = InMemoryJobStore()
    await store.put_chat(Chat(id="c1", user_id="u1"))
    chat = await store.update_chat("c1", active_stream_id="job-1")
    assert chat is not None
    assert chat.active_stream_id == "job-1"
    assert await store.update_chat("missing", status="idle") is None

    await store.insert_job_if_idle(_job())
    stats = await store.stats()
    assert stats["total_jobs"] == 1
    assert stats["pending_jobs"] == 1
