"""Root logging setup for the camnoise command line.

Logs go to stderr (stdout carries the generated values) and, when a
``logging.file`` is configured, to a small rotating file next to it.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# a tick logs a line at most, so a few hundred KB covers a long run
_LOG_FILE_BYTES = 500 * 1024
_LOG_FILE_BACKUPS = 2

_configured = False


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        name = level.upper()
        if not hasattr(logging, name):
            raise ValueError(f"Unknown log level '{level}'")
        return getattr(logging, name)
    return int(level)


def _handlers(console: bool, log_file: Optional[Path]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=_LOG_FILE_BYTES, backupCount=_LOG_FILE_BACKUPS, encoding="utf-8")
        )
    return handlers


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Install the camnoise handlers on the root logger.

    Once configured, later calls only change the level unless ``force``
    rebuilds the handlers.
    """
    global _configured
    numeric_level = _coerce_level(level)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    # the CLI's event loop is noisy at debug level
    logging.getLogger("asyncio").setLevel(max(numeric_level, logging.WARNING))

    if _configured and not force:
        return

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in _handlers(console, Path(log_file) if log_file else None):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _configured = True


def configure_from_settings(settings, *, force: bool = False, console: bool = True) -> None:
    """Apply a :class:`camnoise.config.LoggingSettings` block."""
    configure_logging(settings.level, force=force, console=console, log_file=settings.file)


__all__ = ["configure_from_settings", "configure_logging", "LOG_FORMAT", "LOG_DATEFMT"]
