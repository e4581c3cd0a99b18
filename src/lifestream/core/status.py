"""
Service lifecycle states and the scheduler's state snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ServiceStatus(str, Enum):
    """Lifecycle state of a polling service."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"  # last fetch failed, serving stale data
    FAULTED = "faulted"
    STOPPING = "stopping"

    @property
    def is_active(self) -> bool:
        return self in (ServiceStatus.RUNNING, ServiceStatus.DEGRADED)

    @property
    def can_start(self) -> bool:
        return self in (ServiceStatus.STOPPED, ServiceStatus.FAULTED)


@dataclass(frozen=True, slots=True)
class SchedulerState:
    """Point-in-time copy of a scheduler's status and counters."""

    status: ServiceStatus = ServiceStatus.STOPPED
    consecutive_failures: int = 0
    last_refresh: Optional[datetime] = None
    next_refresh: Optional[datetime] = None
    last_error: Optional[str] = None
