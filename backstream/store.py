"""
Job store interface and in-memory implementation.

The controller only talks to the JobStore protocol; a document database
with secondary indexes on (chat_id, status) and (user_id, status) fits it.
InMemoryJobStore serializes every operation behind one asyncio.Lock, which
lets it offer two atomic primitives:

- insert_job_if_idle: insert only if the chat has no pending/running job
- increment_usage: lazy daily reset plus addition in one step
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from backstream.models import (
    ACTIVE_STATUSES,
    Chat,
    JobStatus,
    Message,
    StreamJob,
    User,
    utc_now,
)


class JobStore(Protocol):
    """Persistence operations consumed by the lifecycle controller."""

    async def insert_job_if_idle(self, job: StreamJob) -> bool: ...

    async def get_job(self, job_id: str) -> Optional[StreamJob]: ...

    async def update_job(self, job_id: str, **fields: Any) -> Optional[StreamJob]: ...

    async def find_job_by_chat(
        self, chat_id: str, status: JobStatus
    ) -> Optional[StreamJob]: ...

    async def list_jobs_by_user(
        self, user_id: str, statuses: Iterable[JobStatus]
    ) -> List[StreamJob]: ...

    async def get_chat(self, chat_id: str) -> Optional[Chat]: ...

    async def put_chat(self, chat: Chat) -> None: ...

    async def update_chat(self, chat_id: str, **fields: Any) -> Optional[Chat]: ...

    async def upsert_message(
        self,
        chat_id: str,
        client_message_id: str,
        content: str,
        reasoning: Optional[str],
    ) -> Message: ...

    async def list_messages(self, chat_id: str) -> List[Message]: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def put_user(self, user: User) -> None: ...

    async def increment_usage(
        self, user_id: str, date: str, cents: float
    ) -> Optional[User]: ...

    async def stats(self) -> Dict[str, int]: ...


def generate_job_id() -> str:
    """Generate a unique job ID."""
    return f"job-{uuid.uuid4().hex[:12]}"


class InMemoryJobStore:
    """
    Single-process JobStore.

    Records are pydantic models; reads return copies so callers can never
    mutate stored state without going through the store.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, StreamJob] = {}
        self._chats: Dict[str, Chat] = {}
        self._users: Dict[str, User] = {}
        self._messages: Dict[Tuple[str, str], Message] = {}
        self._lock = asyncio.Lock()

    # -- jobs ---------------------------------------------------------------

    def _active_job_for_chat(self, chat_id: str) -> Optional[StreamJob]:
        for job in self._jobs.values():
            if job.chat_id == chat_id and job.status in ACTIVE_STATUSES:
                return job
        return None

    async def insert_job_if_idle(self, job: StreamJob) -> bool:
        """Insert the job unless its chat already has an active one."""
        async with self._lock:
            if self._active_job_for_chat(job.chat_id) is not None:
                return False
            self._jobs[job.id] = job.model_copy(deep=True)
            return True

    async def get_job(self, job_id: str) -> Optional[StreamJob]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def update_job(self, job_id: str, **fields: Any) -> Optional[StreamJob]:
        """
        Patch a job.

        Returns the updated job, or None if the job is missing or already
        terminal (terminal jobs are immutable).
        """
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return None
            updated = job.model_copy(update=fields, deep=True)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def find_job_by_chat(
        self, chat_id: str, status: JobStatus
    ) -> Optional[StreamJob]:
        async with self._lock:
            for job in self._jobs.values():
                if job.chat_id == chat_id and job.status == status:
                    return job.model_copy(deep=True)
            return None

    async def list_jobs_by_user(
        self, user_id: str, statuses: Iterable[JobStatus]
    ) -> List[StreamJob]:
        wanted = set(statuses)
        async with self._lock:
            jobs = [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.user_id == user_id and job.status in wanted
            ]
        jobs.sort(key=lambda j: j.created_at)
        return jobs

    # -- chats --------------------------------------------------------------

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        async with self._lock:
            chat = self._chats.get(chat_id)
            return chat.model_copy() if chat else None

    async def put_chat(self, chat: Chat) -> None:
        async with self._lock:
            self._chats[chat.id] = chat.model_copy()

    async def update_chat(self, chat_id: str, **fields: Any) -> Optional[Chat]:
        async with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return None
            fields.setdefault("updated_at", utc_now())
            updated = chat.model_copy(update=fields)
            self._chats[chat_id] = updated
            return updated.model_copy()

    # -- messages -----------------------------------------------------------

    async def upsert_message(
        self,
        chat_id: str,
        client_message_id: str,
        content: str,
        reasoning: Optional[str],
    ) -> Message:
        key = (chat_id, client_message_id)
        async with self._lock:
            existing = self._messages.get(key)
            if existing is None:
                message = Message(
                    id=f"msg-{uuid.uuid4().hex[:12]}",
                    chat_id=chat_id,
                    client_message_id=client_message_id,
                    content=content,
                    reasoning=reasoning,
                )
            else:
                message = existing.model_copy(
                    update={"content": content, "reasoning": reasoning}
                )
            self._messages[key] = message
            return message.model_copy()

    async def list_messages(self, chat_id: str) -> List[Message]:
        async with self._lock:
            messages = [
                m.model_copy() for m in self._messages.values() if m.chat_id == chat_id
            ]
        messages.sort(key=lambda m: m.created_at)
        return messages

    # -- users --------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    async def put_user(self, user: User) -> None:
        async with self._lock:
            self._users[user.id] = user.model_copy()

    async def increment_usage(
        self, user_id: str, date: str, cents: float
    ) -> Optional[User]:
        """Add cents to today's usage, resetting first if the stored date is stale."""
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            used = user.ai_usage_cents if user.ai_usage_date == date else 0.0
            updated = user.model_copy(
                update={"ai_usage_date": date, "ai_usage_cents": used + cents}
            )
            self._users[user_id] = updated
            return updated.model_copy()

    async def stats(self) -> Dict[str, int]:
        """Get job store statistics."""
        async with self._lock:
            counts = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status.value] += 1
            return {
                "total_jobs": len(self._jobs),
                **{f"{name}_jobs": count for name, count in counts.items()},
                "messages": len(self._messages),
            }


# Global job store singleton
_job_store: Optional[InMemoryJobStore] = None


def get_job_store() -> InMemoryJobStore:
    """Get the global job store."""
    global _job_store
    if _job_store is None:
        _job_store = InMemoryJobStore()
    return _job_store


def reset_job_store() -> None:
    """Reset global job store. For testing only."""
    global _job_store
    _job_store = None
