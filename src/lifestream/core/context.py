"""
Execution context shared by the CLI and the service factory.

The context bundles the loaded settings with the directories services may
write to, so service construction stays declarative.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, MutableSet, Optional, Sequence

from ..config import Settings, load_settings
from .logging import ContextLoggerAdapter
from .logging import get_logger as _get_logger


@dataclass(slots=True)
class ExecutionContext:
    """
    Shared execution context.

    Attributes
    ----------
    settings:
        Parsed settings file (or defaults).
    data_dir:
        Root directory for persisted service data.
    enabled_services:
        Allowlist of service IDs. Empty means every enabled catalogue entry.
    """

    settings: Settings
    data_dir: Path
    enabled_services: MutableSet[str] = field(default_factory=set)

    @classmethod
    def build_default(
        cls,
        *,
        data_dir: Optional[Path] = None,
        enabled_services: Optional[Sequence[str]] = None,
        settings: Optional[Settings] = None,
    ) -> "ExecutionContext":
        """
        Construct a context using sensible defaults.

        Parameters
        ----------
        data_dir:
            Overrides the settings' data directory. Created when missing.
        enabled_services:
            Optional allowlist of service IDs.
        settings:
            Preloaded settings. When omitted :func:`load_settings` is called.
        """

        resolved_settings = settings or load_settings()
        resolved_dir = data_dir or resolved_settings.app.data_dir
        resolved_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            settings=resolved_settings,
            data_dir=resolved_dir,
            enabled_services=set(enabled_services or []),
        )

    def is_enabled(self, service_id: str) -> bool:
        if not self.enabled_services:
            return True
        return service_id in self.enabled_services

    def service_data_dir(self, service_id: str) -> Path:
        path = self.data_dir / "services" / service_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_logger(self, name: str, *, extra: Optional[Mapping[str, object]] = None) -> ContextLoggerAdapter:
        return _get_logger(name, extra=extra)
