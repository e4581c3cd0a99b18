"""
Lifecycle management for a group of polling services.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence, Type, TypeVar

from ..core.logging import Categories, for_category
from ..core.scheduler import PollingService

S = TypeVar("S", bound=PollingService)

_LOGGER = for_category(Categories.APP)


class ServiceManager:
    """
    Owns the registered services and starts, stops and refreshes them in bulk.

    Bulk operations never stop at the first failure: a service that raises is
    logged and the remaining services are still processed.
    """

    def __init__(self) -> None:
        self._services: List[PollingService] = []
        self._lock = threading.Lock()
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._services)

    @property
    def services(self) -> Sequence[PollingService]:
        with self._lock:
            return tuple(self._services)

    def register(self, service: PollingService) -> PollingService:
        if service is None:
            raise ValueError("service must not be None.")
        with self._lock:
            if self._closed:
                raise RuntimeError("ServiceManager has been closed.")
            if any(existing.service_id == service.service_id for existing in self._services):
                raise ValueError(f"Service '{service.service_id}' is already registered.")
            self._services.append(service)
        _LOGGER.info("Registered service", extra={"service": service.name, "source_type": service.source_type})
        return service

    def get(self, service_id: str) -> Optional[PollingService]:
        for service in self.services:
            if service.service_id == service_id:
                return service
        return None

    def get_by_type(self, service_type: Type[S]) -> Optional[S]:
        for service in self.services:
            if isinstance(service, service_type):
                return service
        return None

    def start_all(self) -> None:
        services = self.services
        _LOGGER.info("Starting all services", extra={"count": len(services)})
        for service in services:
            try:
                service.start()
            except Exception as exc:
                _LOGGER.error("Failed to start service", extra={"service": service.name}, exc_info=exc)
        _LOGGER.info("All services started")

    def stop_all(self) -> None:
        _LOGGER.info("Stopping all services")
        for service in self.services:
            try:
                service.stop()
            except Exception as exc:
                _LOGGER.error("Failed to stop service", extra={"service": service.name}, exc_info=exc)
        _LOGGER.info("All services stopped")

    def refresh_all(self) -> None:
        _LOGGER.debug("Refreshing all services")
        for service in self.services:
            if service.is_running:
                service.refresh_now()

    def close(self) -> None:
        """Stop and close every service, then forget them."""

        if self._closed:
            return
        self.stop_all()
        for service in self.services:
            try:
                service.close()
            except Exception as exc:
                _LOGGER.error("Failed to close service", extra={"service": service.name}, exc_info=exc)
        with self._lock:
            self._services.clear()
            self._closed = True

    def __enter__(self) -> "ServiceManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
