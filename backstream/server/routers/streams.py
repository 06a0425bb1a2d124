"""
Stream job endpoints.

POST /v1/chats/{chat_id}/streams        - Start a background stream job
GET  /v1/chats/{chat_id}/streams/active - The chat's running/pending job
GET  /v1/streams/{job_id}               - Poll a job
GET  /v1/streams/{job_id}/events        - SSE relay of a job's deltas
POST /v1/streams/sweep                  - Error out the caller's stale jobs
GET  /v1/usage                          - Caller's shared-tier allowance
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from backstream.jobs import StreamJobController
from backstream.models import JobStatus, JobView, QuotaStatus, SweepResult
from backstream.server.auth import require_caller
from backstream.server.exceptions import NotFoundError
from backstream.server.schemas import CreateStreamRequest, CreateStreamResponse


router = APIRouter(prefix="/v1", tags=["streams"])

POLL_INTERVAL_SECONDS = 0.1
KEEPALIVE_INTERVAL_SECONDS = 15.0
MAX_RELAY_SECONDS = 300.0


def get_controller(request: Request) -> StreamJobController:
    return request.app.state.controller


# =============================================================================
# SSE relay
# =============================================================================


def _sse(data: dict, event: Optional[str] = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(data)}\n\n"


async def relay_job_events(
    controller: StreamJobController,
    job_id: str,
    user_id: str,
    *,
    cursor: int = 0,
    reasoning_cursor: int = 0,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS,
    max_duration: float = MAX_RELAY_SECONDS,
) -> AsyncGenerator[str, None]:
    """
    Follow a job through the store and emit what was added since the cursors.

    Cursors are character offsets into content/reasoning, so a client that
    reconnects with the lengths it already has resumes without duplicates.
    """
    started = time.monotonic()
    last_sent = started
    seq = 0

    while True:
        view = await controller.query(job_id, user_id)
        if view is None:
            yield _sse({"error": "Stream not found"}, event="error")
            return

        delta = view.content[cursor:]
        reasoning = (view.reasoning or "")[reasoning_cursor:]
        if delta or reasoning:
            seq += 1
            payload = {"id": seq, "delta": delta}
            if reasoning:
                payload["reasoning"] = reasoning
            yield _sse(payload)
            cursor += len(delta)
            reasoning_cursor += len(reasoning)
            last_sent = time.monotonic()

        if view.status == JobStatus.COMPLETED:
            yield _sse(
                {"status": view.status.value, "client_message_id": view.client_message_id},
                event="complete",
            )
            return
        if view.status == JobStatus.ERROR:
            yield _sse({"error": view.error}, event="error")
            return

        now = time.monotonic()
        if now - started >= max_duration:
            return
        if now - last_sent >= keepalive_interval:
            yield ": keepalive\n\n"
            last_sent = now
        await asyncio.sleep(poll_interval)


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "/chats/{chat_id}/streams",
    response_model=CreateStreamResponse,
    status_code=202,
)
async def create_stream(
    chat_id: str,
    body: CreateStreamRequest,
    request: Request,
    user_id: str = Depends(require_caller),
    controller: StreamJobController = Depends(get_controller),
) -> CreateStreamResponse:
    """
    Start a background stream job.

    Returns as soon as the job is admitted; upstream I/O happens afterwards.
    """
    job_id = await controller.create(
        chat_id,
        user_id,
        body.client_message_id,
        body.model,
        body.provider,
        body.messages,
        options=body.options,
        api_key=body.api_key,
    )
    base_url = str(request.base_url).rstrip("/")
    return CreateStreamResponse(
        job_id=job_id,
        status=JobStatus.PENDING,
        poll_url=f"{base_url}/v1/streams/{job_id}",
        events_url=f"{base_url}/v1/streams/{job_id}/events",
    )


@router.get("/chats/{chat_id}/streams/active", response_model=JobView)
async def get_active_stream(
    chat_id: str,
    user_id: str = Depends(require_caller),
    controller: StreamJobController = Depends(get_controller),
) -> JobView:
    view = await controller.query_active_by_chat(chat_id, user_id)
    if view is None:
        raise NotFoundError(f"No active stream for chat: {chat_id}")
    return view


@router.post("/streams/sweep", response_model=SweepResult)
async def sweep_stale_streams(
    user_id: str = Depends(require_caller),
    controller: StreamJobController = Depends(get_controller),
) -> SweepResult:
    """Error out the caller's jobs stuck in pending/running."""
    return await controller.sweep_stale(user_id)


@router.get("/streams/{job_id}", response_model=JobView)
async def get_stream(
    job_id: str,
    user_id: str = Depends(require_caller),
    controller: StreamJobController = Depends(get_controller),
) -> JobView:
    view = await controller.query(job_id, user_id)
    if view is None:
        raise NotFoundError(f"Stream not found: {job_id}")
    return view


@router.get("/streams/{job_id}/events")
async def stream_events(
    job_id: str,
    cursor: int = Query(0, ge=0),
    reasoning_cursor: int = Query(0, ge=0),
    user_id: str = Depends(require_caller),
    controller: StreamJobController = Depends(get_controller),
) -> StreamingResponse:
    """
    Relay a job's output via Server-Sent Events.

    Event types:
    - (default): {"id", "delta", "reasoning"?} text added since the last event
    - complete: job finished
    - error: job failed, or was not found

    Example SSE format:
        data: {"id": 1, "delta": "Hello"}

        event: complete
        data: {"status": "completed", "client_message_id": "m-1"}
    """
    if await controller.query(job_id, user_id) is None:
        raise NotFoundError(f"Stream not found: {job_id}")

    return StreamingResponse(
        relay_job_events(
            controller,
            job_id,
            user_id,
            cursor=cursor,
            reasoning_cursor=reasoning_cursor,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/usage", response_model=QuotaStatus)
async def get_usage(
    user_id: str = Depends(require_caller),
    controller: StreamJobController = Depends(get_controller),
) -> QuotaStatus:
    """Today's shared-tier spend and remaining allowance."""
    return await controller.quota.status(user_id)
