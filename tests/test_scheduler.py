from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

import pytest

from lifestream.core.adaptive import AdaptiveRefreshStrategy
from lifestream.core.dispatch import InlineDispatcher, QueueDispatcher
from lifestream.core.scheduler import CancellationToken, PollingService
from lifestream.core.status import ServiceStatus
from lifestream.core.strategies import AdaptiveObservationStrategy, BackoffSchedule, FixedBackoffStrategy

TINY_BACKOFF = BackoffSchedule.of([timedelta(milliseconds=10)])


class StubService(PollingService):
    """Polling service whose hooks are plain callables."""

    def __init__(
        self,
        fetch: Callable[[CancellationToken], Any],
        *,
        max_retries: int = 3,
        interval: timedelta = timedelta(hours=1),
        strategy=None,
        dispatcher=None,
        initialize: Optional[Callable[[], None]] = None,
        store: Optional[Callable[[Any], None]] = None,
        changed: Optional[Callable[[Any, Any], bool]] = None,
    ) -> None:
        super().__init__(
            "stub",
            "Stub service",
            "stub",
            max_retries=max_retries,
            strategy=strategy or FixedBackoffStrategy(interval, TINY_BACKOFF),
            dispatcher=dispatcher or InlineDispatcher(),
        )
        self._fetch = fetch
        self._initialize = initialize
        self._store = store
        self._changed = changed
        self.fetch_count = 0
        self.shutdown_calls = 0

    def fetch_data(self, token: CancellationToken) -> Any:
        self.fetch_count += 1
        return self._fetch(token)

    def on_initialize(self) -> None:
        if self._initialize is not None:
            self._initialize()

    def on_shutdown(self) -> None:
        self.shutdown_calls += 1

    def store_data(self, data: Any) -> None:
        if self._store is not None:
            self._store(data)

    def has_data_changed(self, new_data: Any, previous_data: Any) -> bool:
        if self._changed is not None:
            return self._changed(new_data, previous_data)
        return True


class EventLog:
    def __init__(self, service: PollingService) -> None:
        self.data: List[Any] = []
        self.statuses: List[tuple[ServiceStatus, ServiceStatus]] = []
        self.errors: List[Any] = []
        self.threads: List[threading.Thread] = []
        service.data_received.connect(self._on_data)
        service.status_changed.connect(lambda event: self.statuses.append((event.old_status, event.new_status)))
        service.error_occurred.connect(self.errors.append)

    def _on_data(self, event) -> None:
        self.threads.append(threading.current_thread())
        self.data.append(event.data)


def test_start_fetches_immediately_and_delivers_data(wait):
    service = StubService(lambda token: {"frame": 1})
    events = EventLog(service)

    service.start()
    try:
        assert wait(lambda: events.data == [{"frame": 1}])
        assert service.status is ServiceStatus.RUNNING
        assert service.last_refresh is not None
        assert wait(lambda: service.next_refresh is not None and service.next_refresh > service.last_refresh)
    finally:
        service.stop()

    assert (ServiceStatus.STOPPED, ServiceStatus.STARTING) in events.statuses
    assert (ServiceStatus.STARTING, ServiceStatus.RUNNING) in events.statuses
    assert service.status is ServiceStatus.STOPPED
    assert service.next_refresh is None


def test_refresh_now_never_overlaps_in_flight_fetch(wait):
    release = threading.Event()
    entered = threading.Event()
    lock = threading.Lock()
    active = {"now": 0, "peak": 0}

    def fetch(token: CancellationToken) -> Any:
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        entered.set()
        release.wait(5)
        with lock:
            active["now"] -= 1
        return object()

    service = StubService(fetch)
    service.start()
    try:
        assert entered.wait(5)
        for _ in range(10):
            service.refresh_now()
            time.sleep(0.005)
        assert service.fetch_count == 1
        release.set()
        # The pending request runs once the in-flight fetch has finished.
        assert wait(lambda: service.fetch_count == 2)
        time.sleep(0.05)
        assert service.fetch_count == 2
    finally:
        release.set()
        service.stop()

    assert active["peak"] == 1


def test_refresh_now_triggers_fetch_when_idle(wait):
    service = StubService(lambda token: object())
    service.start()
    try:
        assert wait(lambda: service.fetch_count == 1 and service.next_refresh is not None)
        service.refresh_now()
        assert wait(lambda: service.fetch_count == 2)
    finally:
        service.stop()


class ScriptedStrategy:
    """Return the given delays in order, then an hour."""

    def __init__(self, *delays: timedelta) -> None:
        self._delays = list(delays)

    def observe(self, outcome, *, timestamp) -> None:
        pass

    def next_delay(self, state) -> timedelta:
        return self._delays.pop(0) if self._delays else timedelta(hours=1)


def test_refresh_now_supersedes_tick_waiting_on_lock(wait):
    service = StubService(lambda token: None, strategy=ScriptedStrategy(timedelta(milliseconds=200)))
    service.start()
    try:
        assert wait(lambda: service.fetch_count == 1 and not service._is_fetching)
        with service._lock:
            # The 200 ms tick fires here and blocks until the lock is released.
            time.sleep(0.5)
            service.refresh_now()
        assert wait(lambda: service.fetch_count >= 2)
        time.sleep(0.2)
        assert service.fetch_count == 2
    finally:
        service.stop()


def test_refresh_now_is_ignored_when_not_running():
    service = StubService(lambda token: object())

    service.refresh_now()
    time.sleep(0.05)

    assert service.fetch_count == 0
    assert service.status is ServiceStatus.STOPPED


def test_repeated_failures_fault_the_service(wait):
    def fetch(token: CancellationToken) -> Any:
        raise RuntimeError("upstream unavailable")

    service = StubService(fetch, max_retries=3)
    events = EventLog(service)

    service.start()
    assert wait(lambda: service.status is ServiceStatus.FAULTED)
    time.sleep(0.05)

    assert service.fetch_count == 3
    assert service.consecutive_failures == 3
    assert service.next_refresh is None
    assert service.last_error == "upstream unavailable"
    assert [error.will_retry for error in events.errors] == [True, True, False]
    assert events.errors[0].next_retry is not None
    assert events.errors[-1].next_retry is None
    assert (ServiceStatus.RUNNING, ServiceStatus.DEGRADED) in events.statuses
    assert (ServiceStatus.DEGRADED, ServiceStatus.FAULTED) in events.statuses

    service.refresh_now()
    time.sleep(0.05)
    assert service.fetch_count == 3
    service.stop()
    assert service.status is ServiceStatus.STOPPED


def test_restart_after_fault_gets_full_retry_budget(wait):
    outcomes = iter([RuntimeError("1"), RuntimeError("2"), {"ok": True}])

    def fetch(token: CancellationToken) -> Any:
        outcome = next(outcomes, {"ok": True})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    service = StubService(fetch, max_retries=2)
    service.start()
    assert wait(lambda: service.status is ServiceStatus.FAULTED)

    service.start()
    try:
        assert service.consecutive_failures == 0
        assert wait(lambda: service.fetch_count == 3)
        assert wait(lambda: service.status is ServiceStatus.RUNNING and service.last_refresh is not None)
    finally:
        service.stop()


def test_degraded_service_recovers_on_success(wait):
    outcomes = iter([RuntimeError("blip")])

    def fetch(token: CancellationToken) -> Any:
        outcome = next(outcomes, "payload")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    service = StubService(fetch, max_retries=5)
    events = EventLog(service)
    service.start()
    try:
        assert wait(lambda: events.data == ["payload"])
        assert service.status is ServiceStatus.RUNNING
        assert service.consecutive_failures == 0
        assert service.last_error is None
    finally:
        service.stop()

    assert (ServiceStatus.RUNNING, ServiceStatus.DEGRADED) in events.statuses
    assert (ServiceStatus.DEGRADED, ServiceStatus.RUNNING) in events.statuses


def test_initialize_failure_faults_and_propagates():
    def initialize() -> None:
        raise OSError("cache unreadable")

    service = StubService(lambda token: object(), initialize=initialize)
    events = EventLog(service)

    with pytest.raises(OSError):
        service.start()

    time.sleep(0.05)
    assert service.status is ServiceStatus.FAULTED
    assert service.last_error == "cache unreadable"
    assert service.fetch_count == 0
    assert events.statuses[-1] == (ServiceStatus.STARTING, ServiceStatus.FAULTED)


def test_stop_is_idempotent():
    service = StubService(lambda token: object())
    events = EventLog(service)

    service.stop()
    assert events.statuses == []

    service.start()
    service.stop()
    service.stop()

    stopped = [pair for pair in events.statuses if pair[1] is ServiceStatus.STOPPED]
    assert len(stopped) == 1
    assert service.shutdown_calls == 1


def test_stop_cancels_in_flight_fetch_silently(wait):
    entered = threading.Event()

    def fetch(token: CancellationToken) -> Any:
        entered.set()
        token.wait(5)
        raise RuntimeError("connection aborted")

    service = StubService(fetch)
    events = EventLog(service)
    service.start()
    assert entered.wait(5)

    service.stop()
    time.sleep(0.1)

    assert events.errors == []
    assert events.data == []
    assert service.status is ServiceStatus.STOPPED
    assert service.consecutive_failures == 0


def test_unchanged_data_raises_no_event(wait):
    service = StubService(lambda token: "same", changed=lambda new, previous: new != previous)
    events = EventLog(service)
    service.start()
    try:
        assert wait(lambda: events.data == ["same"])
        service.refresh_now()
        assert wait(lambda: service.fetch_count == 2)
        time.sleep(0.05)
        assert events.data == ["same"]
        assert service.consecutive_failures == 0
    finally:
        service.stop()


def test_none_result_is_not_data(wait):
    service = StubService(lambda token: None)
    events = EventLog(service)
    service.start()
    try:
        assert wait(lambda: service.fetch_count == 1 and service.next_refresh is not None)
        assert events.data == []
        assert service.last_refresh is None
        assert service.status is ServiceStatus.RUNNING
    finally:
        service.stop()


def test_store_runs_before_data_received(wait):
    order: List[str] = []
    service = StubService(lambda token: "frame", store=lambda data: order.append(f"store:{data}"))
    service.data_received.connect(lambda event: order.append(f"event:{event.data}"))

    service.start()
    try:
        assert wait(lambda: len(order) == 2)
    finally:
        service.stop()

    assert order == ["store:frame", "event:frame"]


def test_store_failure_reports_error_and_skips_data_event(wait):
    def store(data: Any) -> None:
        raise OSError("disk full")

    service = StubService(lambda token: "frame", store=store)
    events = EventLog(service)
    service.start()
    try:
        assert wait(lambda: len(events.errors) == 1)
        error = events.errors[0]
        assert "disk full" in error.message
        assert error.will_retry is True
        assert events.data == []
        assert service.consecutive_failures == 0
        assert service.status is ServiceStatus.RUNNING
    finally:
        service.stop()


def test_failure_event_reports_the_armed_retry_time(wait):
    def fetch(token: CancellationToken) -> Any:
        raise RuntimeError("HTTP 503")

    backoff = BackoffSchedule.of([timedelta(minutes=5)])
    service = StubService(fetch, strategy=FixedBackoffStrategy(timedelta(hours=1), backoff), max_retries=5)
    events = EventLog(service)
    service.start()
    try:
        assert wait(lambda: len(events.errors) == 1)
        assert wait(lambda: service.next_refresh == events.errors[0].next_retry)
        assert service.status is ServiceStatus.DEGRADED
    finally:
        service.stop()


def test_failure_with_pending_refresh_reports_immediate_retry(wait):
    holder: dict[str, PollingService] = {}

    def fetch(token: CancellationToken) -> Any:
        if holder["service"].fetch_count == 1:
            holder["service"].refresh_now()
            raise RuntimeError("HTTP 503")
        return None

    backoff = BackoffSchedule.of([timedelta(minutes=5)])
    service = StubService(fetch, strategy=FixedBackoffStrategy(timedelta(hours=1), backoff), max_retries=5)
    holder["service"] = service
    events = EventLog(service)
    before = datetime.now(timezone.utc)
    service.start()
    try:
        assert wait(lambda: service.fetch_count == 2)
        error = events.errors[0]
        assert error.will_retry
        assert error.next_retry - before < timedelta(minutes=1)
    finally:
        service.stop()


def test_queue_dispatcher_delivers_on_consumer_thread(wait):
    dispatcher = QueueDispatcher()
    service = StubService(lambda token: "frame", dispatcher=dispatcher)
    events = EventLog(service)

    service.start()
    try:
        # Two status changes plus the data delivery are queued, none has run yet.
        assert wait(lambda: dispatcher.pending >= 3)
        assert events.data == []
        assert events.statuses == []
        dispatcher.process_pending()
    finally:
        service.stop()
        dispatcher.process_pending()

    assert events.data == ["frame"]
    assert events.threads == [threading.current_thread()]
    assert events.statuses[0] == (ServiceStatus.STOPPED, ServiceStatus.STARTING)
    assert events.statuses[-1] == (ServiceStatus.STOPPING, ServiceStatus.STOPPED)


def test_coroutine_fetch_is_awaited(wait):
    async def fetch_async() -> str:
        return "async-frame"

    service = StubService(lambda token: fetch_async())
    events = EventLog(service)
    service.start()
    try:
        assert wait(lambda: events.data == ["async-frame"])
    finally:
        service.stop()


def test_adaptive_strategy_counts_misses_but_not_failures(wait):
    outcomes = iter([None, RuntimeError("timeout")])

    def fetch(token: CancellationToken) -> Any:
        outcome = next(outcomes, None)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    adaptive = AdaptiveRefreshStrategy(
        base_interval=timedelta(minutes=6),
        initial_slack=timedelta(seconds=30),
        minimum_interval=timedelta(seconds=30),
        maximum_interval=timedelta(minutes=15),
        retry_interval=timedelta(seconds=20),
    )
    service = StubService(fetch, strategy=AdaptiveObservationStrategy(adaptive, TINY_BACKOFF), max_retries=5)
    service.start()
    try:
        assert wait(lambda: service.fetch_count == 1 and service.next_refresh is not None)
        assert adaptive.consecutive_misses == 1
        service.refresh_now()
        assert wait(lambda: service.consecutive_failures == 1)
        assert adaptive.consecutive_misses == 1
    finally:
        service.stop()


def test_context_manager_starts_and_closes(wait):
    service = StubService(lambda token: "frame")

    with service:
        assert service.is_running
        assert wait(lambda: service.fetch_count >= 1)

    assert service.status is ServiceStatus.STOPPED
    with pytest.raises(RuntimeError):
        service.start()


def test_max_retries_must_be_positive():
    with pytest.raises(ValueError):
        StubService(lambda token: None, max_retries=0)
