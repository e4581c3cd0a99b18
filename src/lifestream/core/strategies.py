"""
Scheduling strategies consumed by :class:`~lifestream.core.scheduler.PollingService`.

The scheduler does not know how the next delay is chosen. After every fetch it
reports the outcome through :meth:`RefreshStrategy.observe` and asks
:meth:`RefreshStrategy.next_delay` when to run again. Two strategies ship:

* :class:`FixedBackoffStrategy` polls on a fixed interval and walks an
  escalating backoff table while fetches fail.
* :class:`AdaptiveObservationStrategy` delegates to an
  :class:`~lifestream.core.adaptive.AdaptiveRefreshStrategy` while the source
  is healthy and falls back to the same backoff table on failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol, Sequence, Tuple

from .adaptive import AdaptiveRefreshStrategy
from .status import SchedulerState


class FetchOutcome(str, Enum):
    """Classification of a completed fetch cycle."""

    NEW_DATA = "new_data"
    NO_DATA = "no_data"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class BackoffSchedule:
    """Escalating retry delays indexed by the consecutive failure count."""

    steps: Tuple[timedelta, ...]

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("BackoffSchedule requires at least one step.")
        if any(step < timedelta(0) for step in self.steps):
            raise ValueError("BackoffSchedule steps must not be negative.")

    @classmethod
    def of(cls, steps: Sequence[timedelta]) -> "BackoffSchedule":
        return cls(tuple(steps))

    def delay_for(self, failures: int) -> timedelta:
        index = min(max(failures, 1) - 1, len(self.steps) - 1)
        return self.steps[index]


DEFAULT_BACKOFF = BackoffSchedule(
    (
        timedelta(seconds=30),
        timedelta(minutes=1),
        timedelta(minutes=2),
        timedelta(minutes=5),
        timedelta(minutes=10),
        timedelta(minutes=30),
    )
)


class RefreshStrategy(Protocol):
    """Decides when a polling service should fetch next."""

    def observe(self, outcome: FetchOutcome, *, timestamp: datetime) -> None:
        """Record the outcome of a completed fetch."""

    def next_delay(self, state: SchedulerState) -> timedelta:
        """Return the delay before the next fetch given the scheduler's state."""


class FixedBackoffStrategy:
    """Poll every ``refresh_interval``; use ``backoff`` while fetches fail."""

    def __init__(self, refresh_interval: timedelta, backoff: BackoffSchedule = DEFAULT_BACKOFF) -> None:
        if refresh_interval <= timedelta(0):
            raise ValueError("refresh_interval must be positive.")
        self.refresh_interval = refresh_interval
        self.backoff = backoff

    def observe(self, outcome: FetchOutcome, *, timestamp: datetime) -> None:
        # Failure counting lives in the scheduler state.
        return None

    def next_delay(self, state: SchedulerState) -> timedelta:
        if state.consecutive_failures > 0:
            return self.backoff.delay_for(state.consecutive_failures)
        return self.refresh_interval


class AdaptiveObservationStrategy:
    """Feed fetch outcomes into an adaptive predictor and poll on its schedule."""

    def __init__(self, adaptive: AdaptiveRefreshStrategy, backoff: BackoffSchedule = DEFAULT_BACKOFF) -> None:
        self.adaptive = adaptive
        self.backoff = backoff

    @property
    def is_overdue(self) -> bool:
        return self.adaptive.is_overdue

    def observe(self, outcome: FetchOutcome, *, timestamp: datetime) -> None:
        if outcome is FetchOutcome.NEW_DATA:
            self.adaptive.record_success(timestamp)
        elif outcome is FetchOutcome.NO_DATA:
            self.adaptive.record_miss()
        # A failure is not a miss: the backoff table handles it in next_delay.

    def next_delay(self, state: SchedulerState) -> timedelta:
        if state.consecutive_failures > 0:
            return self.backoff.delay_for(state.consecutive_failures)
        return self.adaptive.get_delay_until_next_check()
