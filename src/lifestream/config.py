"""
Settings loading for LifeStream.

Settings are read from a TOML file. The lookup order is:

1. Explicit ``LIFESTREAM_SETTINGS_PATH`` environment variable.
2. ``.lifestream/settings.toml`` relative to the current working directory.
3. ``.lifestream/settings.toml`` relative to the project root (the nearest
   parent holding a ``pyproject.toml``).

A missing file is not an error: every value has a default. Call
:func:`load_settings` to obtain a :class:`Settings` instance.

Example::

    [app]
    data_dir = "~/.lifestream"
    log_level = "DEBUG"
    log_dir = "~/.lifestream/logs"

    [apod]
    api_key = "..."
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional

DEFAULT_DATA_DIR = Path.home() / ".lifestream"
DEFAULT_APOD_KEY = "DEMO_KEY"
_ENV_SETTINGS_PATH = "LIFESTREAM_SETTINGS_PATH"


class SettingsError(RuntimeError):
    """Raised when a settings file exists but cannot be parsed."""


@dataclass(slots=True)
class AppSettings:
    """Process-wide options."""

    data_dir: Path = DEFAULT_DATA_DIR
    log_level: Optional[str] = None
    log_dir: Optional[Path] = None


@dataclass(slots=True)
class ApodSettings:
    """Credentials for the NASA Astronomy Picture of the Day API."""

    api_key: str = DEFAULT_APOD_KEY


@dataclass(slots=True)
class Settings:
    """Parsed settings plus the raw TOML payload for ad-hoc lookups."""

    source_path: Optional[Path]
    data: Dict[str, Dict[str, object]]
    app: AppSettings = field(default_factory=AppSettings)
    apod: ApodSettings = field(default_factory=ApodSettings)


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_SETTINGS_PATH)
    if env_override:
        yield Path(env_override).expanduser()

    yield Path.cwd() / ".lifestream" / "settings.toml"
    project_root = _discover_project_root()
    if project_root is not None:
        yield project_root / ".lifestream" / "settings.toml"


def _load_toml(path: Path) -> Dict[str, Dict[str, object]]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise SettingsError(f"Failed to parse settings file '{path}': {exc}") from exc


def _section(raw: Dict[str, Dict[str, object]], name: str) -> Dict[str, object]:
    section = raw.get(name, {})
    return section if isinstance(section, dict) else {}


def _optional_str(value: object) -> Optional[str]:
    return str(value) if isinstance(value, str) and value else None


def _extract_app_settings(raw: Dict[str, Dict[str, object]]) -> AppSettings:
    section = _section(raw, "app")
    data_dir = _optional_str(section.get("data_dir"))
    log_dir = _optional_str(section.get("log_dir"))
    return AppSettings(
        data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
        log_level=_optional_str(section.get("log_level")),
        log_dir=Path(log_dir).expanduser() if log_dir else None,
    )


def _extract_apod_settings(raw: Dict[str, Dict[str, object]]) -> ApodSettings:
    section = _section(raw, "apod")
    return ApodSettings(api_key=_optional_str(section.get("api_key")) or DEFAULT_APOD_KEY)


def load_settings(path: Optional[Path | str] = None) -> Settings:
    """
    Load settings from ``path`` or the first discovered candidate.

    Parameters
    ----------
    path:
        Explicit settings file. When given it must exist.
    """

    if path is not None:
        location = Path(path).expanduser()
        if not location.is_file():
            raise SettingsError(f"Settings file '{location}' does not exist.")
        candidates: Iterable[Path] = (location,)
    else:
        candidates = _candidate_paths()

    for candidate in candidates:
        if candidate.is_file():
            data = _load_toml(candidate)
            return Settings(
                source_path=candidate,
                data=data,
                app=_extract_app_settings(data),
                apod=_extract_apod_settings(data),
            )

    return Settings(source_path=None, data={})
