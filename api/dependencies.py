"""
FastAPI dependencies for dependency injection.

Provides the running daemon's counters to route handlers.
"""

from typing import Optional

from core.stats import ServiceStats


# Global singleton (set when the status app is created)
_stats: Optional[ServiceStats] = None


def set_stats(stats: ServiceStats) -> None:
    """Set the global stats instance."""
    global _stats
    _stats = stats


async def get_stats() -> ServiceStats:
    """
    Dependency that provides the daemon's counters.

    Usage:
        @router.get("/stats")
        async def stats(stats: ServiceStats = Depends(get_stats)):
            ...
    """
    if _stats is None:
        raise RuntimeError("Stats not initialized")
    return _stats
