"""
Status response schemas.

These Pydantic models define the API contract of the status endpoints
and provide automatic validation and documentation.
"""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness of the daemon process."""

    status: str = Field(..., examples=["healthy"])
    service: str = Field(..., description="Pipeline stage served by this process", examples=["transform"])


class ReadyResponse(BaseModel):
    """Readiness of the daemon's record listener."""

    status: str = Field(..., examples=["ready", "starting"])
    checks: dict[str, str] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    """Counters accumulated since the daemon started."""

    service: str
    started_at: float = Field(..., description="Unix time the daemon started")
    uptime_seconds: float
    listening: bool
    connections_total: int = Field(..., description="Inbound connections accepted")
    connections_active: int
    records_received: int = Field(..., description="Records decoded from inbound streams")
    records_sent: int = Field(..., description="Records written to loaders or to the output")
    records_dropped: int = Field(..., description="Records lost to slow or unreachable loaders")
    decode_errors: int = Field(..., description="Frames that did not hold a valid record")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "service": "transform",
                    "started_at": 1700000000.0,
                    "uptime_seconds": 42.5,
                    "listening": True,
                    "connections_total": 3,
                    "connections_active": 1,
                    "records_received": 1200,
                    "records_sent": 1180,
                    "records_dropped": 0,
                    "decode_errors": 0,
                }
            ]
        }
    }
