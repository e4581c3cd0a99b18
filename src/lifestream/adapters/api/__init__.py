"""
HTTP clients and adapters for the sources LifeStream polls.

Each submodule exposes two layers:

* ``Client`` classes wrap low-level HTTP calls with retry logic.
* ``Adapter`` classes provide :class:`~lifestream.adapters.base.DataSourceAdapter`
  implementations used by ``lifestream services verify``.
"""

from .apod import ApodAdapter, ApodClient, ApodEntry
from .base import APIError, BaseAPIClient, TransientStatusError
from .http_watch import HttpWatchAdapter, HttpWatchClient, ResourceStamp

__all__ = [
    "APIError",
    "ApodAdapter",
    "ApodClient",
    "ApodEntry",
    "BaseAPIClient",
    "HttpWatchAdapter",
    "HttpWatchClient",
    "ResourceStamp",
    "TransientStatusError",
]
