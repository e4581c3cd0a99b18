"""
Lifecycle and polling loop shared by every information source.

:class:`PollingService` owns a self-re-arming one-shot timer. Each tick runs
the source's :meth:`~PollingService.fetch_data` hook on the timer thread,
classifies the result, updates counters, asks the configured
:class:`~lifestream.core.strategies.RefreshStrategy` for the next delay and
re-arms. Events are posted to the dispatcher captured at construction, so a
consumer always receives them on the same thread.

State machine::

    STOPPED -> STARTING -> RUNNING <-> DEGRADED
    STARTING -> FAULTED                          (on_initialize raised)
    RUNNING | DEGRADED -> FAULTED                (max_retries failures)
    any -> STOPPING -> STOPPED                   (stop)
    FAULTED -> STARTING                          (explicit start)

Fetch cycles of one instance never overlap. A tick that fires while a fetch is
in flight is dropped. There is no operation-level timeout: a hung fetch holds
the instance until it returns, so fetch implementations own their timeouts.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import threading
from datetime import datetime, timedelta
from typing import Any, Awaitable, Optional

from .adaptive import Clock, utcnow
from .dispatch import Dispatcher, capture_dispatcher
from .events import DataReceivedEvent, ErrorEvent, EventHook, StatusChangedEvent
from .logging import Categories, for_category
from .status import SchedulerState, ServiceStatus
from .strategies import FetchOutcome, FixedBackoffStrategy, RefreshStrategy

_ZERO = timedelta(0)

DEFAULT_REFRESH_INTERVAL = timedelta(minutes=15)
DEFAULT_MAX_RETRIES = 10


class FetchCancelled(Exception):
    """Raised by fetch hooks that observe cancellation of their token."""


class CancellationToken:
    """Cooperative cancellation flag handed to fetch hooks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; return ``True`` if cancelled meanwhile."""

        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelled()


async def _resolve(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class PollingService(abc.ABC):
    """
    Base class for polling-based information services.

    Parameters
    ----------
    service_id:
        Unique identifier of the service instance.
    name:
        Display name.
    source_type:
        Kind of source (``"apod"``, ``"radar"`` ...), used for log namespaces.
    refresh_interval:
        Healthy polling interval for the default :class:`FixedBackoffStrategy`.
        Ignored when ``strategy`` is given.
    max_retries:
        Consecutive fetch failures after which the service is ``FAULTED``.
    strategy:
        Scheduling strategy. Defaults to fixed interval with backoff.
    dispatcher:
        Where events are delivered. Defaults to the dispatcher installed on the
        constructing thread, or inline delivery.
    clock:
        Source of timestamps for ``last_refresh``/``next_refresh`` and events.
    """

    def __init__(
        self,
        service_id: str,
        name: str,
        source_type: str,
        *,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        strategy: Optional[RefreshStrategy] = None,
        dispatcher: Optional[Dispatcher] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        self.service_id = service_id
        self.name = name
        self.source_type = source_type
        self.max_retries = max_retries

        self._strategy: RefreshStrategy = strategy or FixedBackoffStrategy(refresh_interval)
        self._dispatcher = capture_dispatcher(dispatcher)
        self._clock: Clock = clock or utcnow
        self._log = for_category(Categories.SOURCES, source_type=source_type, extra={"service": name})
        self._refresh_log = for_category(Categories.REFRESH, extra={"service": name})

        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._token: Optional[CancellationToken] = None
        self._generation = 0
        self._arm_seq = 0
        self._planned_retry: Optional[tuple[timedelta, datetime]] = None
        self._is_fetching = False
        self._refresh_requested = False
        self._closed = False
        self._last_data: Any = None

        self._status = ServiceStatus.STOPPED
        self._consecutive_failures = 0
        self._last_refresh: Optional[datetime] = None
        self._next_refresh: Optional[datetime] = None
        self._last_error: Optional[str] = None

        self.data_received: EventHook[DataReceivedEvent] = EventHook("data_received")
        self.status_changed: EventHook[StatusChangedEvent] = EventHook("status_changed")
        self.error_occurred: EventHook[ErrorEvent] = EventHook("error_occurred")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(service_id={self.service_id!r}, status={self.status.value!r})"

    # ------------------------------------------------------------------
    # Read-only state

    @property
    def status(self) -> ServiceStatus:
        with self._lock:
            return self._status

    @property
    def is_running(self) -> bool:
        return self.status.is_active

    @property
    def last_refresh(self) -> Optional[datetime]:
        with self._lock:
            return self._last_refresh

    @property
    def next_refresh(self) -> Optional[datetime]:
        with self._lock:
            return self._next_refresh

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def strategy(self) -> RefreshStrategy:
        return self._strategy

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._snapshot()

    # ------------------------------------------------------------------
    # Hooks

    @abc.abstractmethod
    def fetch_data(self, token: CancellationToken) -> Any:
        """
        Fetch from the source on the timer thread.

        Return the data, or ``None`` when nothing new is available. Raise to
        signal failure. May return an awaitable, which is run to completion.
        """

    def store_data(self, data: Any) -> None:
        """Persist confirmed new data. Runs on the dispatcher before ``data_received``."""

    def on_initialize(self) -> None:
        """Synchronous warm-up run by :meth:`start`. Raising faults the service."""

    def on_shutdown(self) -> None:
        """Synchronous teardown run by :meth:`stop`."""

    def has_data_changed(self, new_data: Any, previous_data: Any) -> bool:
        return True

    def data_timestamp(self, data: Any) -> Optional[datetime]:
        """Publish instant of ``data``; the fetch completion time when ``None``."""

        return None

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Initialise synchronously, then begin polling with an immediate tick."""

        with self._lock:
            if self._closed:
                raise RuntimeError(f"Service '{self.service_id}' has been closed.")
            if not self._status.can_start:
                self._log.warning("Start ignored", extra={"status": self._status.value})
                return

            self._log.info("Starting service")
            self._set_status(ServiceStatus.STARTING)
            self._generation += 1
            self._token = CancellationToken()
            self._consecutive_failures = 0
            self._refresh_requested = False
            self._planned_retry = None

            try:
                self.on_initialize()
            except Exception as exc:
                self._log.error("Failed to start service", exc_info=exc)
                self._last_error = str(exc)
                self._token.cancel()
                self._set_status(ServiceStatus.FAULTED)
                raise

            self._last_error = None
            self._arm(_ZERO)
            self._set_status(ServiceStatus.RUNNING)
            self._log.info("Service started")

    def stop(self) -> None:
        """Cancel in-flight work, disarm the timer and run the shutdown hook."""

        with self._lock:
            if self._status is ServiceStatus.STOPPED:
                return

            self._log.info("Stopping service")
            self._set_status(ServiceStatus.STOPPING)
            try:
                if self._token is not None:
                    self._token.cancel()
                self._disarm()
                self.on_shutdown()
            except Exception as exc:
                self._log.error("Error stopping service", exc_info=exc)
            finally:
                self._token = None
                self._next_refresh = None
                self._set_status(ServiceStatus.STOPPED)
            self._log.info("Service stopped")

    def refresh_now(self) -> None:
        """
        Request a fetch at the next possible moment.

        An in-flight fetch is left alone; the request is honoured by scheduling
        the following cycle with no delay once that fetch completes.
        """

        with self._lock:
            if not self._status.is_active:
                self._log.warning("Refresh requested but service is not running", extra={"status": self._status.value})
                return
            self._refresh_log.debug("Manual refresh requested")
            if self._is_fetching:
                self._refresh_requested = True
                return
            self._arm(_ZERO)

    def close(self) -> None:
        """Stop the service for good."""

        if self._closed:
            return
        self.stop()
        self._closed = True

    def __enter__(self) -> "PollingService":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Timer and fetch cycle

    def _arm(self, delay: timedelta, *, due: Optional[datetime] = None) -> None:
        self._cancel_timer()
        self._next_refresh = due or self._clock() + delay
        timer = threading.Timer(delay.total_seconds(), self._on_timer, args=(self._generation, self._arm_seq))
        timer.daemon = True
        timer.name = f"lifestream-{self.service_id}"
        self._timer = timer
        timer.start()
        self._refresh_log.debug(
            "Next refresh scheduled",
            extra={"delay": delay.total_seconds(), "next_refresh": self._next_refresh.isoformat()},
        )

    def _cancel_timer(self) -> None:
        # A timer that already fired may be blocked on the lock; the new sequence makes it stale.
        self._arm_seq += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _disarm(self) -> None:
        self._cancel_timer()
        self._next_refresh = None

    def _on_timer(self, generation: int, seq: int) -> None:
        with self._lock:
            token = self._token
            if seq != self._arm_seq:
                self._refresh_log.debug("Superseded tick ignored")
                return
            if generation != self._generation or token is None or token.cancelled or not self._status.is_active:
                return
            if self._is_fetching:
                self._refresh_log.debug("Tick dropped, fetch still in flight")
                return
            self._is_fetching = True
            self._refresh_requested = False

        try:
            self._perform_fetch(token)
        finally:
            with self._lock:
                self._is_fetching = False
                self._schedule_next(generation)

    def _perform_fetch(self, token: CancellationToken) -> None:
        self._log.debug("Starting fetch")
        changed = False
        arrival: Optional[datetime] = None
        try:
            result = self.fetch_data(token)
            if inspect.isawaitable(result):
                result = asyncio.run(_resolve(result))
            token.raise_if_cancelled()
            if result is not None:
                with self._lock:
                    previous = self._last_data
                    self._last_data = result
                changed = self.has_data_changed(result, previous)
                if changed:
                    arrival = self.data_timestamp(result)
        except (FetchCancelled, asyncio.CancelledError):
            self._log.debug("Fetch cancelled")
            return
        except Exception as exc:
            if token.cancelled:
                self._log.debug("Fetch aborted during shutdown", extra={"error": str(exc)})
                return
            self._handle_failure(token, exc)
            return

        if result is None:
            self._log.debug("Fetch returned no data")
            self._handle_no_data(token)
            return

        if not changed:
            self._log.debug("Fetch returned unchanged data")
            self._handle_no_data(token)
            return
        self._handle_new_data(token, result, arrival)

    def _handle_new_data(self, token: CancellationToken, data: Any, arrival: Optional[datetime]) -> None:
        now = self._clock()
        arrival = arrival or now
        with self._lock:
            if token.cancelled:
                return
            self._last_refresh = now
            self._consecutive_failures = 0
            self._last_error = None
            self._strategy.observe(FetchOutcome.NEW_DATA, timestamp=arrival)
            if self._status is ServiceStatus.DEGRADED:
                self._set_status(ServiceStatus.RUNNING)
        self._log.debug("Fetch completed with new data", extra={"arrival": arrival.isoformat()})
        self._dispatcher.post(lambda: self._deliver(data, now))

    def _handle_no_data(self, token: CancellationToken) -> None:
        with self._lock:
            if token.cancelled:
                return
            self._strategy.observe(FetchOutcome.NO_DATA, timestamp=self._clock())

    def _handle_failure(self, token: CancellationToken, exc: Exception) -> None:
        now = self._clock()
        with self._lock:
            if token.cancelled:
                return
            self._consecutive_failures += 1
            self._last_error = str(exc)
            self._strategy.observe(FetchOutcome.FAILURE, timestamp=now)
            failures = self._consecutive_failures
            self._log.error("Fetch failed", extra={"attempt": failures}, exc_info=exc)

            if failures >= self.max_retries:
                self._set_status(ServiceStatus.FAULTED)
                self._disarm()
                event = ErrorEvent(
                    service=self,
                    message=f"Service faulted after {self.max_retries} consecutive failures: {exc}",
                    exception=exc,
                    will_retry=False,
                    next_retry=None,
                )
            else:
                self._set_status(ServiceStatus.DEGRADED)
                delay = self._next_delay()
                next_retry = now + delay
                self._planned_retry = (delay, next_retry)
                event = ErrorEvent(
                    service=self,
                    message=f"Fetch failed: {exc}",
                    exception=exc,
                    will_retry=True,
                    next_retry=next_retry,
                )
        self._post(self.error_occurred, event)

    def _schedule_next(self, generation: int) -> None:
        if generation != self._generation:
            # Restarted while this fetch was in flight; the new run's first tick was dropped.
            if self._status.is_active:
                self._arm(_ZERO)
            return
        if self._token is None or self._token.cancelled or not self._status.is_active:
            return
        planned, self._planned_retry = self._planned_retry, None
        if planned is not None and not self._refresh_requested:
            self._arm(planned[0], due=planned[1])
            return
        delay = self._next_delay()
        self._refresh_requested = False
        self._arm(delay)

    def _next_delay(self) -> timedelta:
        if self._refresh_requested:
            return _ZERO
        return self._strategy.next_delay(self._snapshot())

    # ------------------------------------------------------------------
    # Event delivery

    def _deliver(self, data: Any, timestamp: datetime) -> None:
        try:
            self.store_data(data)
        except Exception as exc:
            self._log.error("Error storing data", exc_info=exc)
            self.error_occurred.emit(
                ErrorEvent(
                    service=self,
                    message=f"Failed to store data: {exc}",
                    exception=exc,
                    will_retry=self.is_running,
                    next_retry=self.next_refresh,
                )
            )
            return
        self.data_received.emit(DataReceivedEvent(service=self, data=data, is_new_data=True, timestamp=timestamp))

    def _post(self, hook: EventHook[Any], event: Any) -> None:
        self._dispatcher.post(lambda: hook.emit(event))

    def _set_status(self, new_status: ServiceStatus) -> None:
        old_status = self._status
        if old_status is new_status:
            return
        self._status = new_status
        self._log.info("Status changed", extra={"old_status": old_status.value, "new_status": new_status.value})
        self._post(self.status_changed, StatusChangedEvent(service=self, old_status=old_status, new_status=new_status))

    def _snapshot(self) -> SchedulerState:
        return SchedulerState(
            status=self._status,
            consecutive_failures=self._consecutive_failures,
            last_refresh=self._last_refresh,
            next_refresh=self._next_refresh,
            last_error=self._last_error,
        )
