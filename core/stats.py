"""
Runtime counters for the long-running daemons.

Updated by the transform and load servers, read by the status API.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class ServiceStats:
    """Connection and record counters of one daemon."""
    service: str
    started_at: float = field(default_factory=time.time)
    connections_total: int = 0
    connections_active: int = 0
    records_received: int = 0
    records_sent: int = 0
    records_dropped: int = 0
    decode_errors: int = 0
    listening: bool = False

    def connection_opened(self) -> None:
        self.connections_total += 1
        self.connections_active += 1

    def connection_closed(self) -> None:
        self.connections_active = max(0, self.connections_active - 1)

    def snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data["uptime_seconds"] = round(time.time() - self.started_at, 3)
        return data
