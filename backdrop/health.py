"""
Health check endpoints.

Provides liveness and readiness probes for container orchestration.
"""

import os

from fastapi import APIRouter, HTTPException, Request

from .models import CacheStatsModel, HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description="Returns service health status, limits and staging cache usage"
)
async def health(request: Request) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        HealthResponse with service status and staging cache usage
    """
    settings = request.app.state.settings
    stats = request.app.state.cache.stats()
    return HealthResponse(
        status="ok",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        preview_debounce_ms=settings.PREVIEW_DEBOUNCE_MS,
        limits={
            "blur": {"min": settings.MIN_BLUR, "max": settings.MAX_BLUR},
            "scale": {"min": settings.MIN_SCALE, "max": settings.MAX_SCALE},
        },
        staging=CacheStatsModel(**stats.to_dict()),
    )


@router.get(
    "/health/live",
    summary="Liveness probe",
    description="Simple check that the service is running"
)
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get(
    "/health/ready",
    summary="Readiness probe",
    description="Check that the service is ready to accept requests"
)
async def readiness(request: Request):
    """
    Kubernetes readiness probe.

    Checks that the staging cache sweep is running and that saved images
    can be written. Returns 200 if ready, 503 if not ready.
    """
    settings = request.app.state.settings
    output_path = settings.OUTPUT_PATH

    checks = {
        "staging_sweep": request.app.state.cache.sweeping,
        "output_writable": os.path.isdir(output_path) and os.access(output_path, os.W_OK),
    }

    if not all(checks.values()):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "not_ready",
                "checks": checks
            }
        )

    return {
        "status": "ready",
        "checks": checks
    }
