"""
Runtime counters endpoint.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_stats
from api.schemas import StatsResponse
from core.stats import ServiceStats


router = APIRouter(tags=["Stats"])


@router.get("/stats", response_model=StatsResponse)
async def service_stats(stats: ServiceStats = Depends(get_stats)) -> dict:
    """Connection and record counters since start."""
    return stats.snapshot()
