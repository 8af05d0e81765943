"""Logging utilities for Ternity auth.

Module loggers live under the ``ternity`` namespace (``ternity.auth``,
``ternity.cli``); this module configures the shared handlers.
"""

from __future__ import annotations

import logging
import sys

from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from pathlib import Path

    from .config import LogSettings


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None
    file_handler: logging.Handler | None = None


def get_logger() -> logging.Logger:
    """Get the ternity logger instance.

    Returns
    -------
    logging.Logger
        The ternity logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("ternity")
        logger.setLevel(logging.WARNING)

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def configure(settings: LogSettings, log_dir: Path | None = None) -> logging.Logger:
    """Apply log settings, optionally adding a rotating file handler.

    Parameters
    ----------
    settings : LogSettings
        Level, format and rotation limits.
    log_dir : Path, optional
        Directory for ``app.log``. No file handler when omitted or
        when ``settings.to_file`` is false.

    Returns
    -------
    logging.Logger
        The configured ternity logger.
    """
    logger = get_logger()
    logger.setLevel(settings.level)
    formatter = logging.Formatter(settings.format)
    for handler in logger.handlers:
        handler.setFormatter(formatter)

    if _LoggerHolder.file_handler is not None:
        logger.removeHandler(_LoggerHolder.file_handler)
        _LoggerHolder.file_handler.close()
        _LoggerHolder.file_handler = None

    if settings.to_file and log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / "app.log",
                maxBytes=settings.max_bytes,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("File logging disabled: %s", exc)
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)-5s] " + settings.format)
            )
            logger.addHandler(file_handler)
            _LoggerHolder.file_handler = file_handler

    return logger


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Enable verbose logging of every flow step."""
    set_level(logging.DEBUG)


# Keys that should be redacted in log output for security
_SENSITIVE_KEYS = frozenset(
    {
        "token",
        "code",
        "verifier",
        "secret",
        "password",
        "credential",
    }
)


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Redact sensitive values from data for safe logging.

    Recursively traverses dicts/lists and replaces values for keys
    that match sensitive patterns with "[REDACTED]".

    Parameters
    ----------
    data : dict or list or str or None
        The data to redact.
    max_depth : int, optional
        Maximum recursion depth (default: 5).

    Returns
    -------
    dict or list or str or None
        A copy of the data with sensitive values redacted.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"

    if data is None:
        return None

    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for k, v in data.items():
            key_lower = k.lower() if isinstance(k, str) else str(k).lower()
            if any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS):
                result[k] = "[REDACTED]"
            else:
                result[k] = redact_sensitive_data(v, max_depth - 1)
        return result

    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]

    return data
