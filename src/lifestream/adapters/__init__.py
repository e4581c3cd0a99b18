"""
Adapter interfaces for the external sources polled by LifeStream services.

Each adapter wraps one upstream endpoint and exposes a small deterministic
surface that the service layer composes.
"""

from .base import AdapterError, DataSourceAdapter, VerificationResult

__all__ = [
    "AdapterError",
    "DataSourceAdapter",
    "VerificationResult",
]
