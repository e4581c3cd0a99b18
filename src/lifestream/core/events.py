"""
Events raised by polling services towards their consumers.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Generic, List, Optional, TypeVar

from .logging import Categories, get_logger
from .status import ServiceStatus

if TYPE_CHECKING:  # pragma: no cover
    from .scheduler import PollingService

E = TypeVar("E")

_LOGGER = get_logger(f"{Categories.APP}.events")


@dataclass(frozen=True, slots=True)
class DataReceivedEvent:
    service: "PollingService"
    data: Any
    is_new_data: bool
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class StatusChangedEvent:
    service: "PollingService"
    old_status: ServiceStatus
    new_status: ServiceStatus


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    service: "PollingService"
    message: str
    exception: Optional[BaseException]
    will_retry: bool
    next_retry: Optional[datetime]


class EventHook(Generic[E]):
    """Minimal multicast callback list."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: List[Callable[[E], None]] = []
        self._lock = threading.Lock()

    def connect(self, handler: Callable[[E], None]) -> Callable[[E], None]:
        """Subscribe ``handler``; returns it so the method works as a decorator."""

        with self._lock:
            self._handlers.append(handler)
        return handler

    def disconnect(self, handler: Callable[[E], None]) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def emit(self, event: E) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                _LOGGER.exception("Event handler failed", extra={"event": self.name})
