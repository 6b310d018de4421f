"""
Pydantic schemas for API responses.
"""

from api.schemas.status import HealthResponse, ReadyResponse, StatsResponse

__all__ = [
    "HealthResponse",
    "ReadyResponse",
    "StatsResponse",
]
