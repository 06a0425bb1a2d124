"""
Typed exceptions for backstream.

Admission errors (raised synchronously from StreamJobController.create):
- Unauthorized: caller does not own the conversation (or user is unknown)
- StreamAlreadyInProgress: the conversation already has an active job
- QuotaExceeded: shared-tier daily ceiling reached

Execution errors (captured into the job's ``error`` field, never re-raised
to the submitter):
- MissingCredential, UpstreamError, EmptyResponse, StreamTimeout

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BackstreamError(Exception):
    """Base exception for all backstream errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class Unauthorized(BackstreamError):
    """Caller does not own the target conversation or job."""

    pass


class UserNotFound(Unauthorized):
    """The requesting user has no record."""

    pass


class StreamAlreadyInProgress(BackstreamError):
    """A pending or running job already exists for the conversation."""

    def __init__(self, chat_id: str, *, job_id: Optional[str] = None) -> None:
        details: Dict[str, Any] = {"chat_id": chat_id}
        if job_id:
            details["job_id"] = job_id
        self.chat_id = chat_id
        self.job_id = job_id
        super().__init__("Stream already in progress for this chat", details=details)


class QuotaExceeded(BackstreamError):
    """Shared-tier daily spend ceiling reached.

    Attributes:
        used_cents: Spend recorded for today
        limit_cents: The configured daily ceiling
    """

    def __init__(
        self,
        message: str,
        *,
        used_cents: Optional[float] = None,
        limit_cents: Optional[float] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if used_cents is not None:
            details["used_cents"] = used_cents
        if limit_cents is not None:
            details["limit_cents"] = limit_cents
        self.used_cents = used_cents
        self.limit_cents = limit_cents
        super().__init__(message, details=details)


class MissingCredential(BackstreamError):
    """No API key could be resolved for the job's provider."""

    pass


class UpstreamError(BackstreamError):
    """Non-success HTTP status from the model API.

    The message embeds both the status code and the response body.
    """

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"OpenRouter API error: {status_code} - {body}",
            details={"status_code": status_code},
        )

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class EmptyResponse(BackstreamError):
    """Upstream returned no readable body."""

    pass


class StreamTimeout(BackstreamError):
    """The absolute per-job time budget was exceeded."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(
            f"Stream timed out after {seconds:g} seconds",
            details={"timeout_seconds": seconds},
        )


__all__ = [
    "BackstreamError",
    "Unauthorized",
    "UserNotFound",
    "StreamAlreadyInProgress",
    "QuotaExceeded",
    "MissingCredential",
    "UpstreamError",
    "EmptyResponse",
    "StreamTimeout",
]
