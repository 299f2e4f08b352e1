"""System monitoring service for the admin area."""

import logging
import time
from typing import Any

import psutil

from app.domains.relay.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

GB = 1024**3


class SystemStatsService:
    """Snapshot of host load and relay activity.

    Args:
        registry: Live connections, used to count active users
        started_at: Wall-clock start of the process; defaults to psutil's
            view of the current process
    """

    def __init__(self, registry: ConnectionRegistry, started_at: float | None = None):
        self.registry = registry
        self.started_at = started_at if started_at is not None else psutil.Process().create_time()

    def get_stats(self) -> dict[str, Any]:
        """Collect CPU, memory, uptime and active user count.

        Returns:
            Dictionary shaped for the admin dashboard
        """
        memory = psutil.virtual_memory()
        stats = {
            "cpu": round(psutil.cpu_percent(interval=None), 2),
            "memory": {
                "used": round((memory.total - memory.available) / GB, 2),
                "total": round(memory.total / GB, 2),
            },
            "uptime": round(max(time.time() - self.started_at, 0.0), 1),
            "activeUsers": len(self.registry.active_users()),
        }
        logger.debug(f"System stats: {stats}")
        return stats
