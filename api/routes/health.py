"""
Health check endpoints.

Provides endpoints for monitoring and orchestrator liveness/readiness probes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_stats
from api.schemas import HealthResponse, ReadyResponse
from core.logging import get_logger
from core.stats import ServiceStats


logger = get_logger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(stats: ServiceStats = Depends(get_stats)) -> dict:
    """
    Basic health check.

    Returns 200 if the process is running.
    """
    return {
        "status": "healthy",
        "service": stats.service,
    }


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(stats: ServiceStats = Depends(get_stats)):
    """
    Readiness check.

    Returns 200 once the record listener is bound, 503 before that.
    """
    if not stats.listening:
        return JSONResponse(
            status_code=503,
            content={"status": "starting", "checks": {"listener": "down"}},
        )
    return {
        "status": "ready",
        "checks": {"listener": "ok"},
    }
