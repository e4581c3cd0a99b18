"""
Change probe for HTTP resources that are republished on a cadence.

Radar loops, forecast bulletins and similar products are regenerated in place
under a stable URL. A ``HEAD`` request exposes the cache validators, which are
enough to tell whether a new version was published and when.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from ..base import DataSourceAdapter, VerificationResult
from .base import APIError, BaseAPIClient


@dataclass(frozen=True, slots=True)
class ResourceStamp:
    """Cache validators of a watched resource at probe time."""

    url: str
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    content_length: Optional[int] = None

    @property
    def has_validators(self) -> bool:
        return self.etag is not None or self.last_modified is not None

    def same_version(self, other: Optional["ResourceStamp"]) -> bool:
        """
        Return ``True`` when ``other`` describes the same published version.

        ETags win over ``Last-Modified``; without either, the content length is
        the only signal left.
        """

        if other is None or other.url != self.url:
            return False
        if self.etag is not None or other.etag is not None:
            return self.etag == other.etag
        if self.last_modified is not None or other.last_modified is not None:
            return self.last_modified == other.last_modified
        return self.content_length == other.content_length

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "etag": self.etag,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "content_length": self.content_length,
        }


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 7231 date header into an aware UTC datetime."""

    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def stamp_from_response(url: str, response: httpx.Response) -> ResourceStamp:
    headers = response.headers
    length = headers.get("content-length")
    return ResourceStamp(
        url=url,
        etag=headers.get("etag") or None,
        last_modified=parse_http_date(headers.get("last-modified")),
        content_length=int(length) if length and length.isdigit() else None,
    )


class HttpWatchClient(BaseAPIClient):
    """Issue ``HEAD`` probes against absolute URLs."""

    def __init__(self, *, timeout: float = 20.0) -> None:
        super().__init__(timeout=timeout)

    def probe(self, url: str) -> ResourceStamp:
        response = self._head(url)
        return stamp_from_response(url, response)


@dataclass(slots=True)
class HttpWatchAdapter(DataSourceAdapter):
    """Verify that a watched URL answers and exposes usable validators."""

    source_id: str = "http_watch"
    url: str = ""
    client: HttpWatchClient = field(default_factory=HttpWatchClient)

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError(f"Adapter '{self.source_id}' needs a url to probe.")

    def verify(self) -> VerificationResult:
        try:
            stamp = self.client.probe(self.url)
        except APIError as exc:
            return VerificationResult(success=False, message=f"Probe of {self.url} failed: {exc}")

        details = stamp.to_dict()
        if not stamp.has_validators:
            return VerificationResult(
                success=True,
                message=f"{self.url} reachable but sends neither ETag nor Last-Modified; changes are detected by size only.",
                details=details,
            )
        return VerificationResult(success=True, message=f"{self.url} reachable.", details=details)
