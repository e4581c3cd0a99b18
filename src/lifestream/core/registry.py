"""
Service catalogue declarations and helpers.

The catalogue lists every information source the dashboard can poll together
with its refresh policy. Entries are kept in YAML so adding a radar station or
feed does not require code changes, while Python code gets typed access via
:class:`ServiceDescriptor`.

Example entry::

    - id: radar_sydney
      name: Sydney radar
      kind: http_watch
      url: https://example.org/radar/IDR713.gif
      refresh:
        strategy: adaptive
        base_interval: 6m
        initial_slack: 30s
        minimum_interval: 30s
        maximum_interval: 15m
        retry_interval: 20s
        adaptive_max_retries: 3
        max_observations: 20
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional

import yaml

from .adaptive import AdaptiveRefreshStrategy, Clock
from .strategies import AdaptiveObservationStrategy, FixedBackoffStrategy, RefreshStrategy

_DURATION_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[hms])", re.IGNORECASE)
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


class RegistryLoadError(RuntimeError):
    """Raised when a catalogue YAML file cannot be parsed or validated."""


def parse_duration(value: object) -> timedelta:
    """
    Parse ``"6m"``, ``"30s"``, ``"1h30m"`` or a number of seconds.

    Raises :class:`RegistryLoadError` for anything else.
    """

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise RegistryLoadError(f"Invalid duration {value!r}.")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str) or not value.strip():
        raise RegistryLoadError(f"Invalid duration {value!r}.")

    text = value.strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))
    position = 0
    seconds = 0.0
    for match in _DURATION_RE.finditer(text):
        if text[position : match.start()].strip():
            raise RegistryLoadError(f"Invalid duration '{value}'.")
        seconds += float(match.group("value")) * _UNIT_SECONDS[match.group("unit").lower()]
        position = match.end()
    if position == 0 or text[position:].strip():
        raise RegistryLoadError(f"Invalid duration '{value}'. Use forms like '30s', '6m' or '1h30m'.")
    return timedelta(seconds=seconds)


@dataclass(slots=True)
class RefreshSettings:
    """
    Refresh policy for one service.

    ``strategy`` selects between ``fixed`` (``interval`` plus the failure
    backoff table) and ``adaptive`` (cadence prediction). ``max_retries`` is
    the scheduler's failure budget before faulting; ``adaptive_max_retries``
    is the miss threshold of the adaptive predictor.
    """

    strategy: str = "fixed"
    interval: timedelta = timedelta(minutes=15)
    max_retries: int = 10
    base_interval: timedelta = timedelta(minutes=6)
    initial_slack: timedelta = timedelta(seconds=30)
    minimum_interval: timedelta = timedelta(seconds=30)
    maximum_interval: timedelta = timedelta(minutes=15)
    retry_interval: timedelta = timedelta(seconds=20)
    adaptive_max_retries: int = 3
    max_observations: int = 20

    def validate(self) -> None:
        if self.strategy not in {"fixed", "adaptive"}:
            raise RegistryLoadError(f"Unknown refresh strategy '{self.strategy}'. Expected 'fixed' or 'adaptive'.")
        if self.max_retries < 1:
            raise RegistryLoadError("refresh.max_retries must be >= 1.")
        # Adaptive fields must be valid whatever the strategy.
        try:
            FixedBackoffStrategy(self.interval)
            self._build_adaptive(None)
        except ValueError as exc:
            raise RegistryLoadError(f"Invalid refresh settings: {exc}") from exc

    def build_strategy(self, *, clock: Optional[Clock] = None) -> RefreshStrategy:
        """Instantiate the configured scheduling strategy."""

        if self.strategy == "adaptive":
            return AdaptiveObservationStrategy(self._build_adaptive(clock))
        return FixedBackoffStrategy(self.interval)

    def _build_adaptive(self, clock: Optional[Clock]) -> AdaptiveRefreshStrategy:
        return AdaptiveRefreshStrategy(
            base_interval=self.base_interval,
            initial_slack=self.initial_slack,
            minimum_interval=self.minimum_interval,
            maximum_interval=self.maximum_interval,
            retry_interval=self.retry_interval,
            max_retries=self.adaptive_max_retries,
            max_observations=self.max_observations,
            clock=clock,
        )


@dataclass(slots=True)
class ServiceDescriptor:
    """
    Metadata and refresh policy of a single service.

    Parameters
    ----------
    service_id:
        Unique identifier used across the application.
    name:
        Human-friendly display name.
    kind:
        Implementation selector understood by the service factory
        (``apod``, ``http_watch``).
    description:
        Short summary shown by ``lifestream services list``.
    enabled:
        Disabled entries are skipped by ``run``.
    url:
        Endpoint polled by URL-based kinds.
    refresh:
        Scheduling policy.
    options:
        Kind-specific free-form settings.
    """

    service_id: str
    name: str
    kind: str
    description: str = ""
    enabled: bool = True
    url: Optional[str] = None
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    options: Mapping[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.service_id or not self.service_id.isidentifier():
            raise RegistryLoadError(f"Service '{self.service_id}' must be a valid identifier (letters, digits, underscore).")
        self.refresh.validate()

    def to_dict(self) -> Dict[str, Any]:
        refresh = {key: (value.total_seconds() if isinstance(value, timedelta) else value) for key, value in asdict(self.refresh).items()}
        return {
            "id": self.service_id,
            "name": self.name,
            "kind": self.kind,
            "description": self.description,
            "enabled": self.enabled,
            "url": self.url,
            "refresh": refresh,
            "options": dict(self.options),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


class ServiceRegistry:
    """In-memory catalogue of :class:`ServiceDescriptor` entries."""

    def __init__(self) -> None:
        self._entries: MutableMapping[str, ServiceDescriptor] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, descriptor: ServiceDescriptor) -> None:
        """Register or overwrite a descriptor."""

        descriptor.validate()
        self._entries[descriptor.service_id] = descriptor

    def get(self, service_id: str) -> Optional[ServiceDescriptor]:
        return self._entries.get(service_id)

    def require(self, service_id: str) -> ServiceDescriptor:
        """Retrieve a descriptor or raise an informative error."""

        descriptor = self.get(service_id)
        if descriptor is None:
            raise KeyError(f"Service '{service_id}' is not registered.")
        return descriptor

    def list(self) -> List[ServiceDescriptor]:
        return list(self._entries.values())

    def iter_enabled(self) -> Iterator[ServiceDescriptor]:
        for descriptor in self._entries.values():
            if descriptor.enabled:
                yield descriptor

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ServiceRegistry":
        """Load descriptors from a YAML document."""

        location = Path(path)
        if not location.exists():
            raise RegistryLoadError(f"Catalogue file '{location}' does not exist.")

        try:
            with location.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise RegistryLoadError(f"Failed to parse '{location}': {exc}") from exc

        if not isinstance(payload, list):
            raise RegistryLoadError(f"Catalogue file '{location}' must contain a list of services.")

        registry = cls()
        for entry in payload:
            registry.register(_descriptor_from_payload(entry, origin=location))
        return registry


def _refresh_from_payload(entry: object, *, origin: Path) -> RefreshSettings:
    if entry is None:
        return RefreshSettings()
    if not isinstance(entry, dict):
        raise RegistryLoadError(f"Invalid refresh block in '{origin}': expected mapping, got {type(entry)!r}")

    defaults = RefreshSettings()
    durations = ("interval", "base_interval", "initial_slack", "minimum_interval", "maximum_interval", "retry_interval")
    values: Dict[str, Any] = {"strategy": str(entry.get("strategy", defaults.strategy)).lower()}
    for key in durations:
        values[key] = parse_duration(entry[key]) if key in entry else getattr(defaults, key)
    for key in ("max_retries", "adaptive_max_retries", "max_observations"):
        raw = entry.get(key, getattr(defaults, key))
        try:
            values[key] = int(raw)
        except (TypeError, ValueError) as exc:
            raise RegistryLoadError(f"Invalid integer for refresh.{key} in '{origin}': {raw!r}") from exc
    return RefreshSettings(**values)


def _descriptor_from_payload(entry: object, *, origin: Path) -> ServiceDescriptor:
    if not isinstance(entry, dict):
        raise RegistryLoadError(f"Invalid entry in '{origin}': expected mapping, got {type(entry)!r}")

    try:
        options = entry.get("options") or {}
        if not isinstance(options, dict):
            raise RegistryLoadError(f"Options for '{entry['id']}' in '{origin}' must be a mapping.")
        descriptor = ServiceDescriptor(
            service_id=str(entry["id"]),
            name=str(entry.get("name", entry["id"])),
            kind=str(entry["kind"]),
            description=str(entry.get("description", "")).strip(),
            enabled=bool(entry.get("enabled", True)),
            url=_optional_str(entry.get("url")),
            refresh=_refresh_from_payload(entry.get("refresh"), origin=origin),
            options=dict(options),
        )
    except KeyError as exc:
        raise RegistryLoadError(f"Missing required key {exc!s} in '{origin}'.") from exc

    descriptor.validate()
    return descriptor


def _optional_str(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
