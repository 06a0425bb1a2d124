"""
Request correlation for the HTTP surface.

Each request gets an id (the caller's X-Request-ID, or a fresh one) held in
a context variable. Job tasks spawned while handling a request copy the
context, so engine log lines for that job carry the id of the request that
created it. RequestIdLogFilter exposes the id to log formats as
``%(request_id)s``.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


class RequestIdLogFilter(logging.Filter):
    """Stamp ``record.request_id`` ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the call and write an access line."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
            # Health probes would drown out job traffic.
            if request.url.path != "/health":
                logger.info(
                    "%s %s -> %d in %.1fms user=%s",
                    request.method,
                    request.url.path,
                    response.status_code,
                    (time.perf_counter() - started) * 1000,
                    request.headers.get("X-User-Id", "-"),
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception:
            logger.exception("%s %s raised", request.method, request.url.path)
            raise
        finally:
            request_id_var.reset(token)
