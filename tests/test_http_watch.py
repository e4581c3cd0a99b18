from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from lifestream.adapters.api import APIError
from lifestream.adapters.api.http_watch import (
    HttpWatchAdapter,
    HttpWatchClient,
    ResourceStamp,
    parse_http_date,
    stamp_from_response,
)

RADAR_URL = "https://example.org/radar/IDR713.gif"


def _response(headers: dict[str, str]) -> httpx.Response:
    return httpx.Response(200, headers=headers, request=httpx.Request("HEAD", RADAR_URL))


def test_parse_http_date_returns_utc():
    parsed = parse_http_date("Fri, 01 Mar 2024 01:06:10 GMT")

    assert parsed == datetime(2024, 3, 1, 1, 6, 10, tzinfo=timezone.utc)
    assert parse_http_date(None) is None
    assert parse_http_date("not a date") is None


def test_stamp_from_response_reads_validators():
    stamp = stamp_from_response(
        RADAR_URL,
        _response({"ETag": '"abc"', "Last-Modified": "Fri, 01 Mar 2024 01:06:10 GMT", "Content-Length": "5120"}),
    )

    assert stamp.etag == '"abc"'
    assert stamp.last_modified == datetime(2024, 3, 1, 1, 6, 10, tzinfo=timezone.utc)
    assert stamp.content_length == 5120
    assert stamp.has_validators


def test_http_watch_client_probe_uses_head(monkeypatch):
    seen = []

    def fake_request(self, method, url, **kwargs):
        seen.append((method, url))
        return _response({"Last-Modified": "Fri, 01 Mar 2024 01:00:00 GMT"})

    monkeypatch.setattr(HttpWatchClient, "_request", fake_request, raising=False)

    stamp = HttpWatchClient().probe(RADAR_URL)

    assert seen == [("HEAD", RADAR_URL)]
    assert stamp.url == RADAR_URL
    assert stamp.etag is None


def test_resource_stamp_version_comparison():
    first = datetime(2024, 3, 1, 1, 0, tzinfo=timezone.utc)
    second = datetime(2024, 3, 1, 1, 6, tzinfo=timezone.utc)

    assert ResourceStamp(RADAR_URL, etag='"a"').same_version(ResourceStamp(RADAR_URL, etag='"a"', last_modified=second))
    assert not ResourceStamp(RADAR_URL, etag='"a"').same_version(ResourceStamp(RADAR_URL, etag='"b"'))
    assert ResourceStamp(RADAR_URL, last_modified=first).same_version(ResourceStamp(RADAR_URL, last_modified=first))
    assert not ResourceStamp(RADAR_URL, last_modified=first).same_version(ResourceStamp(RADAR_URL, last_modified=second))
    assert ResourceStamp(RADAR_URL, content_length=10).same_version(ResourceStamp(RADAR_URL, content_length=10))
    assert not ResourceStamp(RADAR_URL).same_version(None)
    assert not ResourceStamp(RADAR_URL).same_version(ResourceStamp("https://example.org/other"))


def test_http_watch_adapter_verify_reports_validators():
    client = MagicMock()
    client.probe.return_value = ResourceStamp(RADAR_URL, etag='"abc"')
    adapter = HttpWatchAdapter(source_id="radar", url=RADAR_URL, client=client)

    result = adapter.verify()

    assert result.success is True
    assert result.details["etag"] == '"abc"'
    client.probe.assert_called_once_with(RADAR_URL)


def test_http_watch_adapter_verify_without_validators_still_succeeds():
    client = MagicMock()
    client.probe.return_value = ResourceStamp(RADAR_URL, content_length=42)
    adapter = HttpWatchAdapter(source_id="radar", url=RADAR_URL, client=client)

    result = adapter.verify()

    assert result.success is True
    assert "size only" in result.message


def test_http_watch_adapter_verify_failure():
    client = MagicMock()
    client.probe.side_effect = APIError("HTTP 503 error")
    adapter = HttpWatchAdapter(source_id="radar", url=RADAR_URL, client=client)

    result = adapter.verify()

    assert result.success is False
    assert "503" in result.message


def test_http_watch_adapter_construction():
    client = MagicMock()

    positional = HttpWatchAdapter("radar", RADAR_URL, client)
    by_keyword = HttpWatchAdapter(source_id="radar", url=RADAR_URL, client=client)

    assert positional == by_keyword
    assert HttpWatchAdapter(url=RADAR_URL).source_id == "http_watch"
    with pytest.raises(ValueError):
        HttpWatchAdapter(source_id="radar")
