"""
Concrete polling services and the catalogue-driven factory.

``kind`` in a :class:`~lifestream.core.registry.ServiceDescriptor` selects the
implementation:

* ``apod``: NASA Astronomy Picture of the Day. Published once a day, so a
  fixed interval is enough. New when the entry date changes.
* ``http_watch``: any URL republished in place (radar loops, forecast
  bulletins). Change detection uses cache validators and the
  ``Last-Modified`` instant feeds the adaptive predictor.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..adapters.api.apod import ApodClient, ApodEntry
from ..adapters.api.http_watch import HttpWatchClient, ResourceStamp
from ..core.adaptive import Clock
from ..core.context import ExecutionContext
from ..core.dispatch import Dispatcher
from ..core.history import SampleHistory, TimestampedSample
from ..core.registry import ServiceDescriptor
from ..core.scheduler import DEFAULT_MAX_RETRIES, CancellationToken, PollingService
from ..core.strategies import RefreshStrategy

APOD_REFRESH_INTERVAL = timedelta(hours=4)
LATEST_FILE = "latest.json"
DEFAULT_STAMP_HISTORY = 20


class ApodService(PollingService):
    """Poll the APOD endpoint and keep every entry as JSON under ``data_dir``."""

    def __init__(
        self,
        service_id: str = "nasa_apod",
        name: str = "NASA APOD",
        *,
        client: Optional[ApodClient] = None,
        data_dir: Optional[Path] = None,
        refresh_interval: timedelta = APOD_REFRESH_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        strategy: Optional[RefreshStrategy] = None,
        dispatcher: Optional[Dispatcher] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(
            service_id,
            name,
            "apod",
            refresh_interval=refresh_interval,
            max_retries=max_retries,
            strategy=strategy,
            dispatcher=dispatcher,
            clock=clock,
        )
        self.client = client or ApodClient()
        self.data_dir = data_dir
        self._current: Optional[ApodEntry] = None

    @property
    def current(self) -> Optional[ApodEntry]:
        return self._current

    def on_initialize(self) -> None:
        if self.data_dir is None:
            return
        latest = self.data_dir / LATEST_FILE
        if not latest.is_file():
            return
        try:
            self._current = ApodEntry.from_payload(json.loads(latest.read_text(encoding="utf-8")))
        except (OSError, ValueError) as exc:
            self._log.warning("Ignoring unreadable APOD cache", extra={"path": str(latest), "error": str(exc)})
            return
        self._log.info("Loaded cached APOD", extra={"date": self._current.date, "title": self._current.title})

    def fetch_data(self, token: CancellationToken) -> ApodEntry:
        token.raise_if_cancelled()
        return self.client.fetch()

    def on_shutdown(self) -> None:
        self.client.close()

    def has_data_changed(self, new_data: Any, previous_data: Any) -> bool:
        reference = previous_data if previous_data is not None else self._current
        return reference is None or new_data.date != reference.date

    def store_data(self, data: ApodEntry) -> None:
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(data.to_dict(), ensure_ascii=False, indent=2)
            (self.data_dir / f"{data.date}.json").write_text(payload, encoding="utf-8")
            (self.data_dir / LATEST_FILE).write_text(payload, encoding="utf-8")
        self._current = data
        self._log.info("Stored APOD", extra={"date": data.date, "title": data.title})


class HttpWatchService(PollingService):
    """
    Watch a URL for new publications.

    Parameters
    ----------
    service_id, name:
        Identity of the service.
    url:
        Absolute URL probed with ``HEAD``.
    client:
        Probe client. A default :class:`HttpWatchClient` is created when omitted.
    data_dir:
        When set, the latest stamp is written to ``latest.json`` there.
    history_size:
        Number of recent publications kept in :attr:`history`.
    """

    def __init__(
        self,
        service_id: str,
        name: str,
        url: str,
        *,
        client: Optional[HttpWatchClient] = None,
        data_dir: Optional[Path] = None,
        history_size: int = DEFAULT_STAMP_HISTORY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        strategy: Optional[RefreshStrategy] = None,
        dispatcher: Optional[Dispatcher] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(
            service_id,
            name,
            "http_watch",
            max_retries=max_retries,
            strategy=strategy,
            dispatcher=dispatcher,
            clock=clock,
        )
        self.url = url
        self.client = client or HttpWatchClient()
        self.data_dir = data_dir
        self.history: SampleHistory[TimestampedSample[ResourceStamp]] = SampleHistory(history_size)

    @property
    def latest(self) -> Optional[ResourceStamp]:
        sample = self.history.get_latest()
        return sample.value if sample is not None else None

    def recent_publications(self, n: Optional[int] = None) -> List[ResourceStamp]:
        samples = self.history.to_list() if n is None else self.history.get_recent(n)
        return [sample.value for sample in samples]

    def fetch_data(self, token: CancellationToken) -> ResourceStamp:
        token.raise_if_cancelled()
        return self.client.probe(self.url)

    def on_shutdown(self) -> None:
        self.client.close()

    def has_data_changed(self, new_data: Any, previous_data: Any) -> bool:
        return not new_data.same_version(previous_data)

    def data_timestamp(self, data: Any) -> Optional[datetime]:
        return data.last_modified

    def store_data(self, data: ResourceStamp) -> None:
        self.history.add(TimestampedSample(timestamp=data.last_modified or self._clock(), value=data))
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            (self.data_dir / LATEST_FILE).write_text(json.dumps(data.to_dict(), indent=2), encoding="utf-8")
        self._log.debug("New publication", extra=data.to_dict())


ServiceBuilder = Callable[..., PollingService]


def _build_apod(descriptor: ServiceDescriptor, context: ExecutionContext, **kwargs: Any) -> PollingService:
    return ApodService(
        descriptor.service_id,
        descriptor.name,
        client=ApodClient(api_key=context.settings.apod.api_key),
        data_dir=context.service_data_dir(descriptor.service_id),
        **kwargs,
    )


def _build_http_watch(descriptor: ServiceDescriptor, context: ExecutionContext, **kwargs: Any) -> PollingService:
    if not descriptor.url:
        raise ValueError(f"Service '{descriptor.service_id}' of kind 'http_watch' requires a url.")
    history_size = int(descriptor.options.get("history_size", DEFAULT_STAMP_HISTORY))
    return HttpWatchService(
        descriptor.service_id,
        descriptor.name,
        descriptor.url,
        data_dir=context.service_data_dir(descriptor.service_id),
        history_size=history_size,
        **kwargs,
    )


_BUILDERS: Dict[str, ServiceBuilder] = {
    "apod": _build_apod,
    "http_watch": _build_http_watch,
}


def supported_kinds() -> List[str]:
    return sorted(_BUILDERS)


def build_service(
    descriptor: ServiceDescriptor,
    context: ExecutionContext,
    *,
    dispatcher: Optional[Dispatcher] = None,
    clock: Optional[Clock] = None,
) -> PollingService:
    """
    Instantiate the polling service described by ``descriptor``.

    Raises ``ValueError`` for unknown kinds or incomplete descriptors.
    """

    builder = _BUILDERS.get(descriptor.kind)
    if builder is None:
        raise ValueError(f"Unknown service kind '{descriptor.kind}'. Supported kinds: {', '.join(supported_kinds())}.")
    return builder(
        descriptor,
        context,
        max_retries=descriptor.refresh.max_retries,
        strategy=descriptor.refresh.build_strategy(clock=clock),
        dispatcher=dispatcher,
        clock=clock,
    )
