"""
Health check endpoint.

Reports in-process job tasks and the store's job counts for load
balancers and monitoring.
"""
from fastapi import APIRouter, Request

from backstream.server.schemas import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Does not require authentication.
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        return HealthResponse(status="starting", version="1.0.0")
    return HealthResponse(
        status="healthy",
        version="1.0.0",
        active_streams=controller.active_count,
        jobs=await controller.store.stats(),
    )
