"""
Background stream job lifecycle.

StreamJobController is the only writer of job state:

    create()   admission checks, insert pending job, spawn execute()
    execute()  pending -> running, stream upstream, flush every N deltas
    complete() running -> completed, upsert final message, bill shared tier
    fail()     pending/running -> error, keep partial content, never bill
    sweep_stale()  force jobs whose worker died into error

create() returns the job id before any upstream I/O. Post-admission
failures never propagate to the submitter; they land in the job's
``error`` field and are observed through query().

Usage:
    controller = StreamJobController(store, UpstreamClient())
    job_id = await controller.create(
        chat_id, user_id, "client-msg-1", "openai/gpt-4o-mini", "osschat",
        [{"role": "user", "content": "Hello"}],
    )
    view = await controller.query(job_id, user_id)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import httpx

from backstream import telemetry
from backstream.config import Settings, get_settings
from backstream.exceptions import (
    BackstreamError,
    MissingCredential,
    StreamAlreadyInProgress,
    StreamTimeout,
    Unauthorized,
    UpstreamError,
)
from backstream.models import (
    ACTIVE_STATUSES,
    ChatMessage,
    ChatStatus,
    JobStatus,
    JobView,
    StreamJob,
    StreamOptions,
    SweepResult,
    UsageSummary,
    utc_now,
)
from backstream.quota import QuotaGate
from backstream.sse import iter_deltas
from backstream.store import JobStore, generate_job_id
from backstream.upstream import UpstreamClient
from backstream.usage import estimate_cost_cents

logger = logging.getLogger(__name__)

NO_API_KEY_MESSAGE = "No API key available"
STALE_JOB_MESSAGE = "Cleaned up stale job"
CANCELLED_MESSAGE = "Stream cancelled"


@dataclass
class _StreamState:
    """Text accumulated by one execution; survives a timeout cancellation."""

    content: str = ""
    reasoning: str = ""
    usage: Optional[UsageSummary] = None
    pending_deltas: int = 0


class StreamJobController:
    def __init__(
        self,
        store: JobStore,
        upstream: UpstreamClient,
        *,
        quota: Optional[QuotaGate] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.upstream = upstream
        self.settings = settings or get_settings()
        self.quota = quota or QuotaGate(
            store, daily_limit_cents=self.settings.daily_limit_cents
        )
        self._slots = asyncio.Semaphore(self.settings.max_concurrent_streams)
        self._tasks: Dict[str, asyncio.Task] = {}

    # =========================================================================
    # Admission
    # =========================================================================

    def is_shared_tier(self, provider: str) -> bool:
        return provider == self.settings.shared_provider

    async def create(
        self,
        chat_id: str,
        user_id: str,
        client_message_id: str,
        model: str,
        provider: str,
        messages: Iterable[Union[ChatMessage, Mapping[str, Any]]],
        options: Optional[Union[StreamOptions, Mapping[str, Any]]] = None,
        api_key: Optional[str] = None,
    ) -> str:
        """
        Admit a completion request and start it in the background.

        Raises:
            Unauthorized: chat missing or not owned by user_id.
            QuotaExceeded: shared tier and today's allowance is used up.
            StreamAlreadyInProgress: the chat already has an active job.
        """
        chat = await self.store.get_chat(chat_id)
        if chat is None or chat.user_id != user_id:
            raise Unauthorized(
                "Chat not found or unauthorized", details={"chat_id": chat_id}
            )

        if self.is_shared_tier(provider):
            await self.quota.ensure_allowed(user_id)

        for status in (JobStatus.RUNNING, JobStatus.PENDING):
            existing = await self.store.find_job_by_chat(chat_id, status)
            if existing is not None:
                raise StreamAlreadyInProgress(chat_id, job_id=existing.id)

        job = StreamJob(
            id=generate_job_id(),
            chat_id=chat_id,
            user_id=user_id,
            client_message_id=client_message_id,
            model=model,
            provider=provider,
            messages=[ChatMessage.model_validate(m) for m in messages],
            options=StreamOptions.model_validate(options) if options is not None else None,
        )
        # Lookup above gives a readable error; this closes the race.
        if not await self.store.insert_job_if_idle(job):
            raise StreamAlreadyInProgress(chat_id)

        await self.store.update_chat(
            chat_id, active_stream_id=job.id, status=ChatStatus.STREAMING
        )
        self._spawn(job.id, api_key)
        logger.info(
            "Stream job %s created for chat %s (model=%s provider=%s)",
            job.id,
            chat_id,
            model,
            provider,
        )
        return job.id

    def _spawn(self, job_id: str, api_key: Optional[str]) -> None:
        task = asyncio.create_task(self._run(job_id, api_key), name=f"stream-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))

    async def _run(self, job_id: str, api_key: Optional[str]) -> None:
        try:
            async with self._slots:
                await self.execute(job_id, api_key)
        except asyncio.CancelledError:
            # Also reached while queued for a slot; no-op if execute() already failed the job.
            await self.fail(job_id, CANCELLED_MESSAGE)
            raise
        except Exception:
            logger.exception("Stream job %s crashed outside the stream loop", job_id)

    # =========================================================================
    # Execution
    # =========================================================================

    def resolve_credential(self, provider: str, api_key: Optional[str]) -> Optional[str]:
        if self.is_shared_tier(provider):
            return self.settings.shared_api_key
        return api_key

    async def execute(self, job_id: str, api_key: Optional[str] = None) -> None:
        """Run one job to a terminal state. Never raises for upstream failures."""
        job = await self.store.get_job(job_id)
        if job is None:
            logger.error("Stream job not found: %s", job_id)
            return

        job = await self.store.update_job(
            job_id,
            status=JobStatus.RUNNING,
            started_at=job.started_at or utc_now(),
        )
        if job is None:
            # Already terminal, e.g. swept while waiting for a slot.
            return

        state = _StreamState()
        timeout = self.settings.stream_timeout_seconds
        with telemetry.span(
            "stream job {job_id}", job_id=job_id, model=job.model, provider=job.provider
        ):
            try:
                credential = self.resolve_credential(job.provider, api_key)
                if not credential:
                    raise MissingCredential(NO_API_KEY_MESSAGE)
                await asyncio.wait_for(self._stream(job, credential, state), timeout=timeout)
            except asyncio.TimeoutError:
                error = StreamTimeout(timeout).message
            except UpstreamError as exc:
                self._log_upstream_rejection(job, exc)
                error = exc.message
            except BackstreamError as exc:
                error = exc.message
            except httpx.HTTPError as exc:
                error = f"Network error: {exc}" if str(exc) else f"Network error: {type(exc).__name__}"
            except asyncio.CancelledError:
                await self.fail(job_id, CANCELLED_MESSAGE, state.content, state.reasoning or None)
                raise
            except Exception as exc:
                logger.exception("Unexpected error in stream job %s", job_id)
                error = str(exc) or "Unknown error"
            else:
                await self.complete(
                    job_id, state.content, state.reasoning or None, usage=state.usage
                )
                return

        await self.fail(job_id, error, state.content, state.reasoning or None)

    def _log_upstream_rejection(self, job: StreamJob, exc: UpstreamError) -> None:
        if exc.is_auth_error:
            source = "shared" if self.is_shared_tier(job.provider) else "caller"
            logger.error(
                "Upstream rejected the %s credential for job %s (status %d)",
                source,
                job.id,
                exc.status_code,
            )
        elif exc.is_rate_limited:
            logger.warning("Upstream rate limited job %s (model=%s)", job.id, job.model)

    async def _stream(self, job: StreamJob, api_key: str, state: _StreamState) -> None:
        interval = max(1, self.settings.flush_interval)
        async with self.upstream.stream_chat(job.model, job.messages, api_key) as chunks:
            async for event in iter_deltas(chunks):
                if event.usage is not None:
                    state.usage = event.usage
                if event.content:
                    state.content += event.content
                    state.pending_deltas += 1
                if event.reasoning:
                    state.reasoning += event.reasoning
                    state.pending_deltas += 1
                if state.pending_deltas >= interval:
                    await self.flush(job.id, state.content, state.reasoning or None)
                    state.pending_deltas = 0

    async def flush(self, job_id: str, content: str, reasoning: Optional[str] = None) -> bool:
        """Persist accumulated text. Safe to repeat; ignored once terminal."""
        fields: Dict[str, Any] = {"content": content}
        if reasoning is not None:
            fields["reasoning"] = reasoning
        return await self.store.update_job(job_id, **fields) is not None

    # =========================================================================
    # Terminal transitions
    # =========================================================================

    async def _release_chat(self, job: StreamJob) -> None:
        chat = await self.store.get_chat(job.chat_id)
        if chat is None:
            return
        if chat.active_stream_id not in (None, job.id):
            return
        await self.store.update_chat(
            job.chat_id, active_stream_id=None, status=ChatStatus.IDLE
        )

    async def complete(
        self,
        job_id: str,
        content: str,
        reasoning: Optional[str] = None,
        *,
        usage: Optional[UsageSummary] = None,
    ) -> bool:
        """
        Mark the job completed and persist the final assistant message.

        Repeating the call for a completed job only re-upserts the message
        keyed by (chat_id, client_message_id); the job itself is immutable
        and is not billed again. Returns True if this call made the transition.
        """
        job = await self.store.get_job(job_id)
        if job is None:
            return False
        if job.status.is_terminal:
            if job.status == JobStatus.COMPLETED:
                await self.store.upsert_message(
                    job.chat_id, job.client_message_id, content, reasoning
                )
            return False

        updated = await self.store.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            content=content,
            reasoning=reasoning,
            completed_at=utc_now(),
        )
        if updated is None:
            return False

        await self._release_chat(updated)
        await self.store.upsert_message(
            updated.chat_id, updated.client_message_id, content, reasoning
        )
        logger.info("Stream job %s completed (%d chars)", job_id, len(content))

        if self.is_shared_tier(updated.provider):
            cents = estimate_cost_cents(usage, updated.messages, content)
            if cents is not None and cents > 0:
                await self.quota.charge(updated.user_id, cents)
        return True

    async def fail(
        self,
        job_id: str,
        error: str,
        partial_content: Optional[str] = None,
        partial_reasoning: Optional[str] = None,
    ) -> bool:
        """
        Mark the job errored, keeping whatever text had accumulated.

        Already-flushed content is never replaced by an empty string.
        Returns True if this call made the transition.
        """
        job = await self.store.get_job(job_id)
        if job is None or job.status.is_terminal:
            return False

        fields: Dict[str, Any] = {
            "status": JobStatus.ERROR,
            "error": error,
            "content": partial_content or job.content,
            "completed_at": utc_now(),
        }
        if partial_reasoning:
            fields["reasoning"] = partial_reasoning
        updated = await self.store.update_job(job_id, **fields)
        if updated is None:
            return False

        await self._release_chat(updated)
        logger.warning("Stream job %s failed: %s", job_id, error)
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    async def query(self, job_id: str, user_id: str) -> Optional[JobView]:
        job = await self.store.get_job(job_id)
        if job is None or job.user_id != user_id:
            return None
        return job.to_view()

    async def query_active_by_chat(self, chat_id: str, user_id: str) -> Optional[JobView]:
        """The chat's running job, else its pending job, else None."""
        for status in (JobStatus.RUNNING, JobStatus.PENDING):
            job = await self.store.find_job_by_chat(chat_id, status)
            if job is not None and job.user_id == user_id:
                return job.to_view()
        return None

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def sweep_stale(
        self, user_id: str, stale_after: Optional[timedelta] = None
    ) -> SweepResult:
        """
        Error out the user's pending/running jobs older than stale_after.

        Externally triggered; a job whose worker died would otherwise stay
        active forever and block its chat.
        """
        if stale_after is None:
            stale_after = timedelta(seconds=self.settings.stale_after_seconds)
        cutoff = utc_now() - stale_after
        jobs = await self.store.list_jobs_by_user(user_id, ACTIVE_STATUSES)

        cleaned = 0
        for job in jobs:
            if job.created_at >= cutoff:
                continue
            if await self.fail(job.id, STALE_JOB_MESSAGE):
                cleaned += 1
                task = self._tasks.get(job.id)
                if task is not None:
                    task.cancel()

        if cleaned:
            logger.info("Swept %d/%d stale jobs for user %s", cleaned, len(jobs), user_id)
        return SweepResult(cleaned=cleaned, total=len(jobs))

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned job task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight jobs; each is failed with CANCELLED_MESSAGE."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
