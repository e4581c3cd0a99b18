"""
Centralised logging helpers for LifeStream.

The helpers wrap :mod:`logging` so every module formats records the same way:
a fixed prefix followed by ``key=value`` pairs taken from the record's extras.
Modules should obtain loggers via :func:`get_logger` or :func:`for_category`
instead of instantiating their own handlers.

Configuration is deterministic and idempotent. ``configure_logging`` installs a
stderr handler and, when a log directory is supplied, a daily rotating file
handler that keeps a month of history.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from copy import copy
from logging import Logger, LoggerAdapter
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
LOG_FILE_NAME = "lifestream.log"
LOG_RETENTION_DAYS = 30
_ENV_LEVEL = "LIFESTREAM_LOG_LEVEL"
_ENV_COLOR = "LIFESTREAM_LOG_COLOR"
_EXTRA_FOCUS_ORDER: Sequence[str] = (
    "service",
    "status",
    "old_status",
    "new_status",
    "attempt",
    "delay",
    "next_refresh",
    "misses",
    "estimated_interval",
    "method",
    "url",
    "status_code",
)


class Categories:
    """Logger namespaces for the different subsystems."""

    SOURCES = "lifestream.sources"
    REFRESH = "lifestream.refresh"
    DATA = "lifestream.data"
    APP = "lifestream.app"


_LEVEL_STYLES = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[95m",
}
_RESET = "\033[0m"

_RESERVED_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime", "taskName"}

_configured = False


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv(_ENV_LEVEL) or DEFAULT_LEVEL).upper()
    resolved = logging.getLevelName(candidate)
    return resolved if isinstance(resolved, int) else logging.INFO


def _coerce_bool(value: str) -> Optional[bool]:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on", "enabled"}:
        return True
    if lowered in {"0", "false", "no", "off", "disabled"}:
        return False
    return None


def _supports_color(stream: Any) -> bool:
    preference = os.getenv(_ENV_COLOR)
    if preference:
        resolved = _coerce_bool(preference)
        if resolved is not None:
            return resolved
    return hasattr(stream, "isatty") and bool(stream.isatty())


def _iter_extras(record: logging.LogRecord) -> Iterable[tuple[str, Any]]:
    payload = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS and not key.startswith("_") and value is not None}

    for key in _EXTRA_FOCUS_ORDER:
        if key in payload:
            yield key, payload.pop(key)

    for key in sorted(payload):
        yield key, payload[key]


def _format_extra_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(_format_extra_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except TypeError:
            return repr(dict(value))
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Formatter that appends structured extras and supports optional colour output."""

    def __init__(self, *, use_color: bool = False) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        working = copy(record)
        if self.use_color:
            working.levelname = self._colourise_level(working.levelname)
        base = super().format(working)
        extras = " ".join(f"{key}={_format_extra_value(value)}" for key, value in _iter_extras(record))
        if not extras:
            return base
        # Keep tracebacks on their own lines below the extras.
        head, sep, tail = base.partition("\n")
        return f"{head} | {extras}{sep}{tail}"

    @staticmethod
    def _colourise_level(levelname: str) -> str:
        style = _LEVEL_STYLES.get(levelname.strip().upper())
        if not style:
            return levelname
        return f"{style}{levelname}{_RESET}"


class ContextLoggerAdapter(LoggerAdapter):
    """Adapter that merges call-site ``extra`` with the adapter's bound context."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        merged: dict[str, Any] = {}
        if isinstance(self.extra, Mapping):
            merged.update({key: value for key, value in self.extra.items() if value is not None})
        call_extra = kwargs.get("extra")
        if isinstance(call_extra, Mapping):
            merged.update(call_extra)
        kwargs["extra"] = merged
        return msg, kwargs


def _build_stream_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(StructuredLogFormatter(use_color=_supports_color(handler.stream)))
    return handler


def _build_file_handler(log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(StructuredLogFormatter(use_color=False))
    return handler


def configure_logging(
    level: Optional[int | str] = None,
    *,
    log_dir: Optional[Path | str] = None,
    force: bool = False,
) -> None:
    """
    Configure root logging handlers unless already initialised.

    Parameters
    ----------
    level:
        Optional logging level override. Falls back to ``LIFESTREAM_LOG_LEVEL`` or ``INFO``.
    log_dir:
        When provided, records are also written to a daily rotating file in this directory.
    force:
        When ``True`` the configuration is reapplied even if previously initialised.
    """

    global _configured
    if _configured and not force:
        return

    resolved = _resolve_level(level)
    handlers = [_build_stream_handler(resolved)]
    if log_dir is not None:
        handlers.append(_build_file_handler(Path(log_dir), resolved))
    logging.basicConfig(level=resolved, handlers=handlers, force=True)
    _configured = True


def get_logger(
    name: str,
    *,
    level: Optional[int | str] = None,
    extra: Optional[Mapping[str, object]] = None,
) -> ContextLoggerAdapter:
    """
    Return a :class:`ContextLoggerAdapter` bound to ``extra``.

    Parameters
    ----------
    name:
        Logger namespace, typically ``__name__`` or one of :class:`Categories`.
    level:
        Optional per-logger level override.
    extra:
        Structured metadata recorded with each log entry.
    """

    configure_logging()
    base: Logger = logging.getLogger(name)
    if level is not None:
        base.setLevel(_resolve_level(level))
    payload = {key: value for key, value in (extra or {}).items() if value is not None}
    return ContextLoggerAdapter(base, payload)


def for_category(category: str, *, source_type: Optional[str] = None, extra: Optional[Mapping[str, object]] = None) -> ContextLoggerAdapter:
    """Return a logger for a subsystem category, optionally narrowed to a source type."""

    name = f"{category}.{source_type.lower()}" if source_type else category
    return get_logger(name, extra=extra)


def bind(logger: LoggerAdapter, **context: object) -> ContextLoggerAdapter:
    """Create a child adapter with additional bound context without mutating ``logger``."""

    current = dict(logger.extra) if isinstance(logger.extra, Mapping) else {}
    current.update({key: value for key, value in context.items() if value is not None})
    return ContextLoggerAdapter(logger.logger, current)


def log_separator(
    logger: LoggerAdapter | Logger,
    *,
    title: Optional[str] = None,
    level: int = logging.INFO,
    char: str = "=",
    width: int = 80,
) -> None:
    """Emit a visual separator, used to mark the start of a session in log files."""

    width = max(16, width)
    body = char * width
    if title:
        padded = f" {title.strip()} "
        if len(padded) < width:
            side = (width - len(padded)) // 2
            body = f"{char * side}{padded}{char * (width - len(padded) - side)}"
        else:
            body = padded
    logger.log(level, body, extra={"separator": title or True})
