"""
LifeStream: polling information services for an ambient dashboard.

:class:`~lifestream.core.scheduler.PollingService` runs each source on its own
schedule, either a fixed interval with failure backoff or the adaptive
predictor in :mod:`lifestream.core.adaptive`. :class:`~lifestream.services.ServiceManager`
groups services for bulk start, stop and refresh.
"""

from .core import (
    AdaptiveRefreshStrategy,
    PollingService,
    QueueDispatcher,
    SampleHistory,
    ServiceStatus,
)
from .services import ServiceManager

__all__ = [
    "AdaptiveRefreshStrategy",
    "PollingService",
    "QueueDispatcher",
    "SampleHistory",
    "ServiceManager",
    "ServiceStatus",
]
