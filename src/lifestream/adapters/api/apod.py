"""
NASA Astronomy Picture of the Day (APOD) client and adapter.

The APOD API publishes one entry per day. ``DEMO_KEY`` works for light use
but is rate limited per IP, so configure ``[apod] api_key`` for unattended
polling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Mapping, Optional

from ..base import DataSourceAdapter, VerificationResult
from .base import APIError, BaseAPIClient

DEFAULT_BASE_URL = "https://api.nasa.gov"
APOD_PATH = "/planetary/apod"
DEFAULT_API_KEY = "DEMO_KEY"


@dataclass(frozen=True, slots=True)
class ApodEntry:
    """One APOD publication."""

    date: str
    title: str
    url: str
    media_type: str = "image"
    explanation: str = ""
    hdurl: Optional[str] = None
    copyright: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.media_type == "image"

    @property
    def publish_date(self) -> Optional[date]:
        try:
            return date.fromisoformat(self.date)
        except ValueError:
            return None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ApodEntry":
        entry_date = payload.get("date")
        title = payload.get("title")
        url = payload.get("url")
        if not isinstance(entry_date, str) or not isinstance(title, str) or not isinstance(url, str):
            raise APIError("APOD response is missing 'date', 'title' or 'url'.")
        return cls(
            date=entry_date,
            title=title,
            url=url,
            media_type=str(payload.get("media_type") or "image"),
            explanation=str(payload.get("explanation") or ""),
            hdurl=_optional(payload.get("hdurl")),
            copyright=_optional(payload.get("copyright")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "title": self.title,
            "url": self.url,
            "media_type": self.media_type,
            "explanation": self.explanation,
            "hdurl": self.hdurl,
            "copyright": self.copyright,
        }


def _optional(value: object) -> Optional[str]:
    return (value.strip() or None) if isinstance(value, str) else None


class ApodClient(BaseAPIClient):
    """Thin client for the APOD endpoint."""

    def __init__(self, *, api_key: str = DEFAULT_API_KEY, base_url: str = DEFAULT_BASE_URL, timeout: float = 30.0) -> None:
        super().__init__(base_url=base_url, timeout=timeout)
        self.api_key = api_key or DEFAULT_API_KEY

    def fetch(self, day: Optional[date] = None) -> ApodEntry:
        """
        Fetch the entry for ``day`` (today's entry when omitted).

        Parameters
        ----------
        day:
            Publication date to request. NASA rejects dates in the future.
        """

        params: Dict[str, Any] = {"api_key": self.api_key}
        if day is not None:
            params["date"] = day.isoformat()
        payload = self._get_json(APOD_PATH, params=params)
        if not isinstance(payload, Mapping):
            raise APIError("Unexpected response type from APOD endpoint.")
        return ApodEntry.from_payload(payload)


@dataclass(slots=True)
class ApodAdapter(DataSourceAdapter):
    """Adapter used by ``lifestream services verify``."""

    source_id: str = "nasa_apod"
    client: ApodClient = field(default_factory=ApodClient)

    def verify(self) -> VerificationResult:
        try:
            entry = self.client.fetch()
        except APIError as exc:
            return VerificationResult(success=False, message=f"APOD verification failed: {exc}")

        return VerificationResult(
            success=True,
            message="NASA APOD endpoint reachable.",
            details={"date": entry.date, "title": entry.title, "media_type": entry.media_type},
        )
