"""
FastAPI application factory.

Usage:
    from backstream.server.app import create_app

    app = create_app()

Or run directly:
    uvicorn backstream.server:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backstream.config import get_settings
from backstream.exceptions import BackstreamError
from backstream.jobs import StreamJobController
from backstream.server.exceptions import APIError, to_api_error
from backstream.server.middleware import RequestTrackingMiddleware
from backstream.server.routers import health, streams
from backstream.server.schemas import ErrorDetail, ErrorResponse
from backstream.store import get_job_store
from backstream.upstream import UpstreamClient

logger = logging.getLogger(__name__)


def build_controller() -> StreamJobController:
    """Wire the default store, upstream client and settings together."""
    settings = get_settings()
    upstream = UpstreamClient(
        base_url=settings.upstream_base_url,
        referer=settings.site_url,
        title=settings.app_title,
    )
    return StreamJobController(get_job_store(), upstream, settings=settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    owned = getattr(app.state, "controller", None) is None
    if owned:
        app.state.controller = build_controller()
    controller: StreamJobController = app.state.controller
    if controller.settings.shared_api_key is None:
        logger.warning("OPENROUTER_API_KEY is not set; shared-tier jobs will fail")

    yield

    await controller.shutdown()
    if owned:
        await controller.upstream.aclose()


def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, request_id=request_id)
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(),
        headers={"X-Request-ID": request_id or "unknown"},
    )


def create_app(controller: Optional[StreamJobController] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        controller: Pre-built controller (tests). Built at startup when omitted.
    """
    get_settings()

    app = FastAPI(
        title="Backstream API",
        description="Background streaming chat-completion jobs",
        version="1.0.0",
        lifespan=lifespan,
    )
    if controller is not None:
        app.state.controller = controller

    app.add_middleware(RequestTrackingMiddleware)

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        return _error_response(request, exc.status_code, exc.code, exc.message)

    @app.exception_handler(BackstreamError)
    async def engine_error_handler(request: Request, exc: BackstreamError) -> JSONResponse:
        """Admission errors raised by the controller or quota gate."""
        api_error = to_api_error(exc)
        return _error_response(request, api_error.status_code, api_error.code, api_error.message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(request, 500, "internal_error", "An internal error occurred")

    app.include_router(health.router)
    app.include_router(streams.router)

    return app


app = create_app()
