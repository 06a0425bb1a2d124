"""
Pydantic models for API request/response schemas.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from backstream.models import ChatMessage, JobStatus, StreamOptions


# =============================================================================
# Stream Endpoint Schemas
# =============================================================================


class CreateStreamRequest(BaseModel):
    """Request body for POST /v1/chats/{chat_id}/streams."""

    client_message_id: str = Field(
        ..., min_length=1, description="Idempotency key for the final assistant message"
    )
    model: str = Field(..., min_length=1, description="Upstream model identifier")
    provider: str = Field(..., min_length=1, description="Billing provider")
    messages: List[ChatMessage] = Field(..., min_length=1, description="Prompt messages")
    options: Optional[StreamOptions] = Field(None, description="Pass-through options")
    api_key: Optional[str] = Field(
        None, description="Caller credential for non-shared providers"
    )


class CreateStreamResponse(BaseModel):
    """Response body for POST /v1/chats/{chat_id}/streams."""

    job_id: str = Field(..., description="Stream job identifier")
    status: JobStatus = Field(..., description="Initial job status")
    poll_url: str = Field(..., description="URL to poll for job state")
    events_url: str = Field(..., description="URL to stream job deltas")


# =============================================================================
# Health Endpoint Schemas
# =============================================================================


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    active_streams: int = Field(0, description="Jobs executing in this process")
    jobs: Dict[str, int] = Field(
        default_factory=dict, description="Job and message counts from the store"
    )


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    request_id: Optional[str] = Field(None, description="Request ID for tracing")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
