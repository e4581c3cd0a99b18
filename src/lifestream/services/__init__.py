"""
Service layer: concrete polling services and their lifecycle manager.
"""

from .manager import ServiceManager
from .sources import ApodService, HttpWatchService, build_service, supported_kinds

__all__ = [
    "ApodService",
    "HttpWatchService",
    "ServiceManager",
    "build_service",
    "supported_kinds",
]
