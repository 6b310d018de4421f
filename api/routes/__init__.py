"""
API route modules.
"""

from api.routes.health import router as health_router
from api.routes.stats import router as stats_router

__all__ = ["health_router", "stats_router"]
