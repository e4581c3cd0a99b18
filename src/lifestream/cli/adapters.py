"""
Helpers for resolving verification adapters in CLI contexts.
"""

from __future__ import annotations

from typing import Optional

from ..adapters import DataSourceAdapter
from ..adapters.api import ApodAdapter, ApodClient, HttpWatchAdapter
from ..core.context import ExecutionContext
from ..core.registry import ServiceDescriptor


def resolve_adapter(descriptor: ServiceDescriptor, context: ExecutionContext) -> Optional[DataSourceAdapter]:
    """
    Locate the adapter that verifies a catalogue entry.

    Returns ``None`` for kinds without a connectivity check.
    """

    if descriptor.kind == "apod":
        client = ApodClient(api_key=context.settings.apod.api_key)
        return ApodAdapter(source_id=descriptor.service_id, client=client)
    if descriptor.kind == "http_watch" and descriptor.url:
        return HttpWatchAdapter(source_id=descriptor.service_id, url=descriptor.url)
    return None
