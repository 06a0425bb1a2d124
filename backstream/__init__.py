"""
backstream: background streaming chat-completion jobs.

Usage:
    from backstream import InMemoryJobStore, StreamJobController, UpstreamClient

    controller = StreamJobController(InMemoryJobStore(), UpstreamClient())
    job_id = await controller.create(chat_id, user_id, "msg-1", model, provider, messages)
"""

from backstream.config import Settings, get_settings
from backstream.exceptions import (
    BackstreamError,
    EmptyResponse,
    MissingCredential,
    QuotaExceeded,
    StreamAlreadyInProgress,
    StreamTimeout,
    Unauthorized,
    UpstreamError,
    UserNotFound,
)
from backstream.jobs import StreamJobController
from backstream.models import (
    Chat,
    ChatMessage,
    ChatStatus,
    DeltaEvent,
    JobStatus,
    JobView,
    Message,
    QuotaStatus,
    StreamJob,
    StreamOptions,
    SweepResult,
    UsageSummary,
    User,
)
from backstream.quota import QuotaGate
from backstream.sse import StreamDecoder, iter_deltas
from backstream.store import InMemoryJobStore, JobStore
from backstream.upstream import UpstreamClient
from backstream.usage import estimate_cost_cents, estimate_tokens, normalize_usage

__all__ = [
    "Settings",
    "get_settings",
    "BackstreamError",
    "EmptyResponse",
    "MissingCredential",
    "QuotaExceeded",
    "StreamAlreadyInProgress",
    "StreamTimeout",
    "Unauthorized",
    "UpstreamError",
    "UserNotFound",
    "StreamJobController",
    "Chat",
    "ChatMessage",
    "ChatStatus",
    "DeltaEvent",
    "JobStatus",
    "JobView",
    "Message",
    "QuotaStatus",
    "StreamJob",
    "StreamOptions",
    "SweepResult",
    "UsageSummary",
    "User",
    "QuotaGate",
    "StreamDecoder",
    "iter_deltas",
    "InMemoryJobStore",
    "JobStore",
    "UpstreamClient",
    "estimate_cost_cents",
    "estimate_tokens",
    "normalize_usage",
]
