"""
Predictive polling for sources that publish on a jittery but regular cadence.

Radar imagery lands roughly every six minutes, forecasts a few times a day at
no fixed minute. Polling such a source on a fixed interval either wastes calls
or adds up to a full interval of latency. :class:`AdaptiveRefreshStrategy`
instead learns the publish cadence from observed arrivals and schedules the
next check just after the predicted arrival.

Arrivals and misses are tracked here, apart from the scheduler's failure
count:

* an *arrival* (:meth:`AdaptiveRefreshStrategy.record_success`) teaches the
  cadence and clears the miss count;
* a *miss* (:meth:`AdaptiveRefreshStrategy.record_miss`) means the expected
  data has not shown up yet. The next check moves closer, to
  ``retry_interval``, rather than backing off. After ``max_retries`` misses the
  strategy stops chasing the current cycle and waits for the next predicted
  one, widening its slack a little each time.
"""

from __future__ import annotations

import statistics
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .history import SampleHistory

Clock = Callable[[], datetime]

_ZERO = timedelta(0)
_MIN_ADAPTIVE_SLACK = timedelta(seconds=15)
_MAX_ADAPTIVE_SLACK = timedelta(seconds=120)
_SLACK_STDDEV_FACTOR = 1.5
_SLACK_GROWTH = 1.2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class RefreshObservation:
    """One poll cycle as seen by the strategy."""

    timestamp: datetime
    arrived: bool


class AdaptiveRefreshStrategy:
    """
    Learn a source's publish cadence and predict when to check next.

    Parameters
    ----------
    base_interval:
        Assumed cadence until enough arrivals have been observed.
    initial_slack:
        Margin added after the predicted arrival to absorb publish jitter. The
        learned slack never drops below this value.
    minimum_interval, maximum_interval:
        Bounds applied to every learned gap and to the estimate. The delay
        returned by :meth:`get_delay_until_next_check` never exceeds
        ``maximum_interval``.
    retry_interval:
        Delay used while expected data has not arrived yet.
    max_retries:
        Number of consecutive misses after which the current cycle is given up.
    max_observations:
        Size of the rolling window of learned gaps.
    min_samples:
        Gaps required before the learned estimate replaces ``base_interval``.
        At most ``max_observations``.
    clock:
        Source of "now"; defaults to the UTC wall clock.
    """

    def __init__(
        self,
        base_interval: timedelta,
        initial_slack: timedelta,
        minimum_interval: timedelta,
        maximum_interval: timedelta,
        retry_interval: timedelta,
        max_retries: int = 3,
        max_observations: int = 10,
        *,
        min_samples: int = 3,
        clock: Optional[Clock] = None,
    ) -> None:
        for name, value in (
            ("base_interval", base_interval),
            ("minimum_interval", minimum_interval),
            ("maximum_interval", maximum_interval),
            ("retry_interval", retry_interval),
        ):
            if value <= _ZERO:
                raise ValueError(f"{name} must be positive.")
        if initial_slack < _ZERO:
            raise ValueError("initial_slack must not be negative.")
        if minimum_interval > maximum_interval:
            raise ValueError("minimum_interval must not exceed maximum_interval.")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        if max_observations < 1:
            raise ValueError("max_observations must be >= 1.")
        if min_samples < 1:
            raise ValueError("min_samples must be >= 1.")
        if min_samples > max_observations:
            raise ValueError("min_samples must not exceed max_observations; the gap window could never fill.")

        self.base_interval = base_interval
        self.initial_slack = initial_slack
        self.minimum_interval = minimum_interval
        self.maximum_interval = maximum_interval
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.max_observations = max_observations
        self.min_samples = min_samples
        self._clock: Clock = clock or utcnow

        self._lock = threading.RLock()
        self._intervals: SampleHistory[timedelta] = SampleHistory(max_observations)
        self._observations: SampleHistory[RefreshObservation] = SampleHistory(max_observations)
        self._last_arrival: Optional[datetime] = None
        self._last_check: Optional[datetime] = None
        self._consecutive_misses = 0
        self._current_slack = initial_slack

    @property
    def consecutive_misses(self) -> int:
        with self._lock:
            return self._consecutive_misses

    @property
    def last_arrival(self) -> Optional[datetime]:
        with self._lock:
            return self._last_arrival

    @property
    def current_slack(self) -> timedelta:
        with self._lock:
            return self._current_slack

    @property
    def observed_intervals(self) -> List[timedelta]:
        return self._intervals.to_list()

    @property
    def estimated_interval(self) -> timedelta:
        """Median learned gap once ``min_samples`` exist, else ``base_interval``."""

        with self._lock:
            return self._estimate()

    @property
    def should_retry(self) -> bool:
        """``True`` while chasing a late arrival with short retries."""

        with self._lock:
            return 0 < self._consecutive_misses < self.max_retries

    @property
    def is_overdue(self) -> bool:
        """``True`` once ``max_retries`` consecutive polls found nothing new."""

        with self._lock:
            return self._consecutive_misses >= self.max_retries

    def recent_observations(self, n: Optional[int] = None) -> List[RefreshObservation]:
        if n is None:
            return self._observations.to_list()
        return self._observations.get_recent(n)

    def record_success(self, arrival: datetime) -> None:
        """Record a poll that found genuinely new data published at ``arrival``."""

        with self._lock:
            now = self._clock()
            if self._last_arrival is not None and arrival > self._last_arrival:
                gap = arrival - self._last_arrival
                # Gaps far beyond the ceiling come from downtime, not cadence.
                if gap <= self.maximum_interval * 2:
                    self._intervals.add(self._clamp(gap))
                    self._adapt_slack()
            if self._last_arrival is None or arrival > self._last_arrival:
                self._last_arrival = arrival
            self._last_check = now
            self._consecutive_misses = 0
            self._observations.add(RefreshObservation(timestamp=now, arrived=True))

    def record_miss(self) -> None:
        """Record a poll that completed without error but found nothing new."""

        with self._lock:
            now = self._clock()
            self._consecutive_misses += 1
            self._last_check = now
            self._observations.add(RefreshObservation(timestamp=now, arrived=False))
            if self._consecutive_misses >= self.max_retries:
                widened = self._current_slack * _SLACK_GROWTH
                self._current_slack = min(widened, self.maximum_interval / 2)

    def get_next_check_time(self) -> datetime:
        """Return the instant at which the source should be polled next."""

        with self._lock:
            now = self._clock()
            if 0 < self._consecutive_misses < self.max_retries:
                return (self._last_check or now) + self.retry_interval

            interval = self._estimate()
            if self._last_arrival is None:
                if self._consecutive_misses == 0:
                    return now
                anchor = self._last_check or now
                return anchor + interval

            next_check = self._last_arrival + interval + self._current_slack
            if self._consecutive_misses >= self.max_retries and self._last_check is not None:
                # Give up on the current cycle and aim at the next predicted one.
                while next_check <= self._last_check:
                    next_check += interval
            return next_check

    def get_delay_until_next_check(self) -> timedelta:
        """Return ``max(0, next_check - now)``, capped at ``maximum_interval``."""

        next_check = self.get_next_check_time()
        delay = next_check - self._clock()
        if delay < _ZERO:
            return _ZERO
        return min(delay, self.maximum_interval)

    def reset(self) -> None:
        with self._lock:
            self._intervals.clear()
            self._observations.clear()
            self._last_arrival = None
            self._last_check = None
            self._consecutive_misses = 0
            self._current_slack = self.initial_slack

    def _clamp(self, value: timedelta) -> timedelta:
        return max(self.minimum_interval, min(value, self.maximum_interval))

    def _estimate(self) -> timedelta:
        gaps = self._intervals.to_list()
        if len(gaps) < self.min_samples:
            return self._clamp(self.base_interval)
        seconds = statistics.median(gap.total_seconds() for gap in gaps)
        return self._clamp(timedelta(seconds=seconds))

    def _adapt_slack(self) -> None:
        gaps = self._intervals.to_list()
        if len(gaps) < self.min_samples:
            return
        spread = statistics.pstdev(gap.total_seconds() for gap in gaps)
        learned = timedelta(seconds=spread * _SLACK_STDDEV_FACTOR) + _MIN_ADAPTIVE_SLACK
        self._current_slack = max(self.initial_slack, min(learned, _MAX_ADAPTIVE_SLACK))
