from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Lifecycle state of a stream job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class ChatStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """One prompt message sent upstream."""

    role: str
    content: str


class StreamOptions(BaseModel):
    """
    Per-request configuration bag.

    Carried on the job verbatim; the engine never interprets it.
    """

    model_config = ConfigDict(extra="forbid")

    reasoning_effort: Optional[str] = None
    enable_web_search: Optional[bool] = None
    max_steps: Optional[int] = Field(default=None, ge=1)


class UsageSummary(BaseModel):
    """
    Canonical usage record.

    Built only by usage.normalize_usage; nothing downstream looks at
    upstream field-name variants.
    """

    # Counts pass through as reported; some providers send fractional values.
    prompt_tokens: Optional[Union[int, float]] = None
    completion_tokens: Optional[Union[int, float]] = None
    total_tokens: Optional[Union[int, float]] = None
    total_cost_usd: Optional[float] = None


class DeltaEvent(BaseModel):
    """One parsed SSE payload: a content/reasoning fragment and/or usage."""

    content: Optional[str] = None
    reasoning: Optional[str] = None
    usage: Optional[UsageSummary] = None


class JobView(BaseModel):
    """Read projection returned to callers polling a job."""

    id: str
    status: JobStatus
    content: str
    reasoning: Optional[str] = None
    error: Optional[str] = None
    client_message_id: str


class StreamJob(BaseModel):
    """One completion attempt for a conversation turn."""

    id: str
    chat_id: str
    user_id: str
    client_message_id: str
    status: JobStatus = JobStatus.PENDING
    model: str
    provider: str
    messages: List[ChatMessage]
    options: Optional[StreamOptions] = None

    content: str = ""
    reasoning: Optional[str] = None
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_view(self) -> JobView:
        return JobView(
            id=self.id,
            status=self.status,
            content=self.content,
            reasoning=self.reasoning,
            error=self.error,
            client_message_id=self.client_message_id,
        )


class Chat(BaseModel):
    """The slice of a conversation record this engine reads and writes."""

    id: str
    user_id: str
    active_stream_id: Optional[str] = None
    status: ChatStatus = ChatStatus.IDLE
    updated_at: datetime = Field(default_factory=utc_now)


class User(BaseModel):
    """The slice of a user record owned by the quota gate."""

    id: str
    ai_usage_date: Optional[str] = None
    ai_usage_cents: float = 0.0


class Message(BaseModel):
    """Final assistant message, unique per (chat_id, client_message_id)."""

    id: str
    chat_id: str
    client_message_id: str
    role: str = "assistant"
    content: str
    reasoning: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class SweepResult(BaseModel):
    cleaned: int
    total: int


class QuotaStatus(BaseModel):
    """Today's shared-tier spend for one user."""

    date: str
    used_cents: float
    limit_cents: float
    remaining_cents: float
    allowed: bool
