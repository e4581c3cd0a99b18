"""
Connectivity checks for polled sources.

``lifestream services verify`` asks an adapter to make one request against the
source behind a catalogue entry and prints the outcome. Adapters never
schedule, compare versions or persist anything; the polling services own that.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol


class AdapterError(RuntimeError):
    """A source could not be reached or answered with something unusable."""


@dataclass(slots=True)
class VerificationResult:
    """
    Outcome of a single connectivity check.

    ``details`` holds what the source reported, for example the current APOD
    date or the ``ETag``/``Last-Modified`` validators of a watched URL.
    """

    success: bool
    message: str
    details: Optional[Mapping[str, object]] = None

    def details_json(self) -> str:
        return json.dumps(dict(self.details or {}), ensure_ascii=False, default=str)


class DataSourceAdapter(Protocol):
    """One connectivity check per catalogue entry, keyed by ``source_id``."""

    source_id: str

    def verify(self) -> VerificationResult:
        """Make one request against the source and report whether it answered."""
