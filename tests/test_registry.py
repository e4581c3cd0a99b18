from __future__ import annotations

import json
from datetime import timedelta

import pytest

from lifestream.core.registry import RefreshSettings, RegistryLoadError, ServiceRegistry, parse_duration
from lifestream.core.strategies import AdaptiveObservationStrategy, FixedBackoffStrategy


def test_registry_load_default_catalogue(registry_file):
    registry = ServiceRegistry.from_yaml(registry_file)

    apod = registry.require("nasa_apod")
    assert apod.kind == "apod"
    assert apod.refresh.strategy == "fixed"
    assert apod.refresh.interval == timedelta(hours=4)

    radar = registry.require("bom_radar_sydney")
    assert radar.kind == "http_watch"
    assert radar.url.endswith("IDR713.gif")
    assert radar.refresh.strategy == "adaptive"
    assert radar.refresh.base_interval == timedelta(minutes=6)
    assert radar.refresh.initial_slack == timedelta(seconds=30)
    assert radar.refresh.maximum_interval == timedelta(minutes=15)
    assert radar.refresh.retry_interval == timedelta(seconds=20)
    assert radar.refresh.adaptive_max_retries == 3
    assert radar.refresh.max_observations == 20

    forecast = registry.require("bom_forecast_nsw")
    assert forecast.refresh.maximum_interval == timedelta(hours=2)
    assert [entry.service_id for entry in registry.iter_enabled()] == ["nasa_apod", "bom_radar_sydney", "bom_forecast_nsw"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("6m", timedelta(minutes=6)),
        ("2h", timedelta(hours=2)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("6m 10s", timedelta(minutes=6, seconds=10)),
        (90, timedelta(seconds=90)),
        ("45", timedelta(seconds=45)),
        (1.5, timedelta(seconds=1.5)),
    ],
)
def test_parse_duration_accepts_supported_forms(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "soon", "5x", "m5", "10m later", None, True, [1]])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(RegistryLoadError):
        parse_duration(raw)


def test_registry_applies_defaults_and_disabled_entries(tmp_path):
    catalogue = tmp_path / "services.yaml"
    catalogue.write_text(
        """
- id: quiet_feed
  kind: http_watch
  url: https://example.org/feed.xml
  enabled: false
- id: radar
  name: Radar
  kind: http_watch
  url: https://example.org/radar.gif
  refresh:
    strategy: ADAPTIVE
    base_interval: 10m
""",
        encoding="utf-8",
    )

    registry = ServiceRegistry.from_yaml(catalogue)

    quiet = registry.require("quiet_feed")
    assert quiet.name == "quiet_feed"
    assert quiet.refresh == RefreshSettings()
    assert [entry.service_id for entry in registry.iter_enabled()] == ["radar"]
    assert len(registry.list()) == 2

    radar = registry.require("radar")
    assert radar.refresh.strategy == "adaptive"
    assert radar.refresh.base_interval == timedelta(minutes=10)
    assert radar.refresh.minimum_interval == RefreshSettings().minimum_interval


@pytest.mark.parametrize(
    "payload",
    [
        "- id: x\n",
        "id: lonely\nkind: apod\n",
        "- id: bad-id\n  kind: apod\n",
        "- id: x\n  kind: apod\n  refresh:\n    strategy: random\n",
        "- id: x\n  kind: apod\n  refresh:\n    interval: whenever\n",
        "- id: x\n  kind: apod\n  refresh:\n    max_retries: 0\n",
        "- id: x\n  kind: apod\n  refresh:\n    max_retries: lots\n",
        "- id: x\n  kind: apod\n  options: [1, 2]\n",
        "- id: x\n  kind: http_watch\n  refresh:\n    strategy: adaptive\n    minimum_interval: 20m\n    maximum_interval: 5m\n",
        "- id: x\n  kind: http_watch\n  refresh:\n    strategy: adaptive\n    max_observations: 0\n",
        "- id: x\n  kind: http_watch\n  refresh:\n    max_observations: 2\n",
        "- id: x\n  kind: apod\n  refresh:\n    interval: 0\n",
        "- id: x\n  kind: apod\n  refresh:\n    retry_interval: 0s\n",
        "- [unclosed\n",
    ],
)
def test_registry_rejects_malformed_catalogues(tmp_path, payload):
    catalogue = tmp_path / "broken.yaml"
    catalogue.write_text(payload, encoding="utf-8")

    with pytest.raises(RegistryLoadError):
        ServiceRegistry.from_yaml(catalogue)


def test_registry_missing_file(tmp_path):
    with pytest.raises(RegistryLoadError):
        ServiceRegistry.from_yaml(tmp_path / "missing.yaml")


def test_registry_require_unknown_service(registry_file):
    registry = ServiceRegistry.from_yaml(registry_file)

    assert registry.get("unknown") is None
    with pytest.raises(KeyError):
        registry.require("unknown")


def test_refresh_settings_build_strategy(clock):
    fixed = RefreshSettings(strategy="fixed", interval=timedelta(minutes=5)).build_strategy()
    assert isinstance(fixed, FixedBackoffStrategy)
    assert fixed.refresh_interval == timedelta(minutes=5)

    adaptive = RefreshSettings(strategy="adaptive", adaptive_max_retries=4, max_observations=7).build_strategy(clock=clock)
    assert isinstance(adaptive, AdaptiveObservationStrategy)
    assert adaptive.adaptive.max_retries == 4
    assert adaptive.adaptive.max_observations == 7
    assert adaptive.adaptive.get_next_check_time() == clock.now


def test_descriptor_to_json_uses_seconds(registry_file):
    registry = ServiceRegistry.from_yaml(registry_file)

    payload = json.loads(registry.require("bom_radar_sydney").to_json())

    assert payload["id"] == "bom_radar_sydney"
    assert payload["refresh"]["base_interval"] == 360.0
    assert payload["refresh"]["strategy"] == "adaptive"
    assert payload["options"] == {"history_size": 20}
