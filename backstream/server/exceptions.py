"""
HTTP exception types for the API server.
"""

from typing import Dict, Type

from backstream.exceptions import (
    BackstreamError,
    QuotaExceeded,
    StreamAlreadyInProgress,
    Unauthorized,
)


class APIError(Exception):
    """Base exception for API errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthenticationError(APIError):
    """Invalid or missing authentication credentials."""

    status_code = 401
    code = "authentication_error"


class NotFoundError(APIError):
    """Job or chat does not exist, or belongs to another user."""

    status_code = 404
    code = "not_found"


class StreamConflictError(APIError):
    """The chat already has an active stream job."""

    status_code = 409
    code = "stream_already_in_progress"


class QuotaExceededError(APIError):
    """Shared-tier daily allowance used up."""

    status_code = 402
    code = "quota_exceeded"


# Unauthorized maps to 404 so job/chat existence is not leaked.
_ENGINE_ERRORS: Dict[Type[BackstreamError], Type[APIError]] = {
    Unauthorized: NotFoundError,
    StreamAlreadyInProgress: StreamConflictError,
    QuotaExceeded: QuotaExceededError,
}


def to_api_error(exc: BackstreamError) -> APIError:
    """Translate an engine admission error into its HTTP counterpart."""
    for engine_type, api_type in _ENGINE_ERRORS.items():
        if isinstance(exc, engine_type):
            return api_type(exc.message)
    return APIError(exc.message)
