"""Logging for the access review engine.

The engine is embedded in host applications, so it configures only the
``access_review`` logger tree and leaves the root logger to the host.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from access_review.config import LoggingSettings, load_settings

PACKAGE_LOGGER = "access_review"

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

_FORMATTER = logging.Formatter(
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(path: str) -> logging.Handler | None:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
    except OSError as exc:
        _logger.warning("Review log file %s unavailable, logging to stderr only: %s", path, exc)
        return None
    handler.setFormatter(_FORMATTER)
    return handler


def configure_logging(settings: LoggingSettings | None = None) -> logging.Logger:
    """Attach handlers to the package logger and return it.

    Settings default to the ``logging`` section of the loaded configuration.
    Calling again replaces the handlers installed by the previous call.
    """
    global _logging_configured

    if settings is None:
        settings = load_settings().logging

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(_FORMATTER)
    package_logger.addHandler(stream_handler)
    if settings.file:
        file_handler = _file_handler(settings.file)
        if file_handler is not None:
            package_logger.addHandler(file_handler)

    package_logger.setLevel(_level(settings.level))
    package_logger.propagate = False

    _logging_configured = True
    return package_logger


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
