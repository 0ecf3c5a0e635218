"""Logging for the routing engine.

Every engine logger lives below the ``route_intelligence`` namespace, and
:func:`setup_logging` only ever touches that namespace. Host applications
keep their own root configuration; records still propagate to it.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig

LOGGER_NAMESPACE = "route_intelligence"

# Marks handlers installed by setup_logging so a second call replaces them
_OWNED_ATTR = "_route_intelligence_owned"

_loggers: dict[str, logging.Logger] = {}
_configured = False
_current_level: int = logging.INFO

console = Console(stderr=True)


def _rich_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        console=console,
        level=level,
        markup=False,
        rich_tracebacks=True,
        show_path=False,
    )
    setattr(handler, _OWNED_ATTR, True)
    return handler


def _file_handler(config: LoggingConfig, level: int) -> logging.Handler:
    path = Path(config.log_file or "")
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(config.format))
    setattr(handler, _OWNED_ATTR, True)
    return handler


def engine_handlers() -> list[logging.Handler]:
    """Handlers currently installed on the namespace logger by :func:`setup_logging`."""
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    return [h for h in namespace.handlers if getattr(h, _OWNED_ATTR, False)]


def _drop_engine_handlers() -> None:
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    for handler in engine_handlers():
        namespace.removeHandler(handler)
        handler.close()


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install console and file output for the engine namespace.

    Safe to call repeatedly: handlers from an earlier call are closed and
    replaced, and already-created loggers pick up the new level.

    Args:
        config: Logging settings, defaults when omitted
    """
    global _configured, _current_level

    config = config or LoggingConfig()
    level = logging.getLevelName(config.level)

    _drop_engine_handlers()
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.setLevel(level)

    if config.console:
        namespace.addHandler(_rich_handler(level))
    if config.log_file:
        namespace.addHandler(_file_handler(config, level))

    _current_level = level
    _configured = True
    for cached in _loggers.values():
        cached.setLevel(level)

    get_logger("setup").info(
        "Logging ready (level=%s, console=%s, file=%s)",
        config.level,
        config.console,
        config.log_file or "-",
    )


def get_logger(name: str) -> logging.Logger:
    """Return the cached ``route_intelligence.<name>`` logger."""
    cached = _loggers.get(name)
    if cached is None:
        cached = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
        cached.setLevel(_current_level)
        _loggers[name] = cached
    return cached


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log ``exc`` with its traceback, prefixed by ``context`` when given.

    Example:
        >>> try:
        ...     table.record(outcome)
        ... except ValueError as e:
        ...     log_exception(logger, e, context="Recording outcome")
    """
    logger.exception("%s: %s", context or "Exception occurred", exc)
