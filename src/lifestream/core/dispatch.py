"""
Delivery of callbacks onto a single consumer thread.

Fetches run on timer threads, but consumers (a UI loop, the CLI's main loop)
want every callback on one known thread. A :class:`Dispatcher` is that thread's
mailbox. Services capture one at construction time:

1. the dispatcher passed explicitly, else
2. the dispatcher installed on the constructing thread via
   :func:`install_dispatcher`, else
3. an :class:`InlineDispatcher`, which runs callbacks on whichever thread
   produced them.
"""

from __future__ import annotations

import queue
import threading
from typing import Callable, Optional, Protocol

from .logging import Categories, get_logger

Callback = Callable[[], None]

_LOGGER = get_logger(f"{Categories.APP}.dispatch")
_local = threading.local()


class Dispatcher(Protocol):
    def post(self, callback: Callback) -> None:
        """Schedule ``callback`` for execution on the dispatcher's thread."""


def _invoke(callback: Callback) -> None:
    try:
        callback()
    except Exception:
        _LOGGER.exception("Dispatched callback raised")


class InlineDispatcher:
    """Run callbacks immediately on the posting thread."""

    def post(self, callback: Callback) -> None:
        _invoke(callback)


class QueueDispatcher:
    """
    FIFO mailbox drained by its owning thread.

    Producers call :meth:`post` from any thread; the owner calls
    :meth:`process_pending` or :meth:`run_until` to execute callbacks in
    posting order.
    """

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[Callback]" = queue.SimpleQueue()

    def post(self, callback: Callback) -> None:
        self._queue.put(callback)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def process_pending(self, timeout: Optional[float] = None) -> int:
        """
        Run every queued callback and return how many ran.

        When ``timeout`` is given and the queue is empty, wait up to ``timeout``
        seconds for the first callback before returning.
        """

        processed = 0
        if timeout is not None:
            try:
                callback = self._queue.get(timeout=timeout)
            except queue.Empty:
                return 0
            _invoke(callback)
            processed += 1
        while True:
            try:
                callback = self._queue.get_nowait()
            except queue.Empty:
                return processed
            _invoke(callback)
            processed += 1

    def run_until(self, stop: threading.Event, *, poll_interval: float = 0.1) -> None:
        """Process callbacks until ``stop`` is set, then drain what is left."""

        while not stop.is_set():
            self.process_pending(timeout=poll_interval)
        self.process_pending()


def install_dispatcher(dispatcher: Dispatcher) -> None:
    """Make ``dispatcher`` the current thread's dispatcher."""

    _local.dispatcher = dispatcher


def uninstall_dispatcher() -> None:
    _local.dispatcher = None


def current_dispatcher() -> Optional[Dispatcher]:
    return getattr(_local, "dispatcher", None)


def capture_dispatcher(explicit: Optional[Dispatcher] = None) -> Dispatcher:
    """Resolve the dispatcher a new service should bind to."""

    return explicit or current_dispatcher() or InlineDispatcher()
