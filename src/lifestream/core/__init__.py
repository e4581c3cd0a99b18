"""
Core infrastructure for LifeStream information services.

The package holds the polling scheduler, the adaptive refresh predictor and
its bounded sample history, event dispatch, the YAML service catalogue and the
logging helpers. Apart from the catalogue loader it only depends on the
standard library.
"""

from .adaptive import AdaptiveRefreshStrategy, RefreshObservation
from .context import ExecutionContext
from .dispatch import (
    Dispatcher,
    InlineDispatcher,
    QueueDispatcher,
    current_dispatcher,
    install_dispatcher,
    uninstall_dispatcher,
)
from .events import DataReceivedEvent, ErrorEvent, EventHook, StatusChangedEvent
from .history import SampleHistory, TimestampedSample
from .logging import Categories, configure_logging, for_category, get_logger, log_separator
from .registry import RefreshSettings, RegistryLoadError, ServiceDescriptor, ServiceRegistry, parse_duration
from .scheduler import CancellationToken, FetchCancelled, PollingService
from .status import SchedulerState, ServiceStatus
from .strategies import (
    DEFAULT_BACKOFF,
    AdaptiveObservationStrategy,
    BackoffSchedule,
    FetchOutcome,
    FixedBackoffStrategy,
    RefreshStrategy,
)

__all__ = [
    "AdaptiveObservationStrategy",
    "AdaptiveRefreshStrategy",
    "BackoffSchedule",
    "CancellationToken",
    "Categories",
    "DataReceivedEvent",
    "DEFAULT_BACKOFF",
    "Dispatcher",
    "ErrorEvent",
    "EventHook",
    "ExecutionContext",
    "FetchCancelled",
    "FetchOutcome",
    "FixedBackoffStrategy",
    "InlineDispatcher",
    "PollingService",
    "QueueDispatcher",
    "RefreshObservation",
    "RefreshSettings",
    "RefreshStrategy",
    "RegistryLoadError",
    "SampleHistory",
    "SchedulerState",
    "ServiceDescriptor",
    "ServiceRegistry",
    "ServiceStatus",
    "StatusChangedEvent",
    "TimestampedSample",
    "configure_logging",
    "current_dispatcher",
    "for_category",
    "get_logger",
    "install_dispatcher",
    "log_separator",
    "parse_duration",
    "uninstall_dispatcher",
]
