"""Logging setup for the ``histolearn`` logger hierarchy.

Library modules log to child loggers (``histolearn.data``,
``histolearn.reductions``, ``histolearn.models``, ``histolearn.training``,
``histolearn.plots`` and ``histolearn.cli``) and never install handlers
themselves. The CLI calls :func:`configure_logging` once per invocation; the
console handler writes to stderr because stdout carries the JSON result.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Tuple


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOGGER_NAME = "histolearn"
LOG_FILE_NAME = "histolearn.log"


def _file_handler(logger: logging.Logger) -> Optional[RotatingFileHandler]:
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler
    return None


def configure_logging(
    log_dir: Path,
    *,
    level: int = logging.INFO,
    max_bytes: int = 1_048_576,
    backup_count: int = 5,
) -> Tuple[logging.Logger, Path]:
    """Attach a rotating ``histolearn.log`` file and a stderr console handler.

    Parameters
    ----------
    log_dir:
        Directory for ``histolearn.log``; created when missing. Calling again
        with a different directory moves the file handler there.
    level:
        Level applied to the ``histolearn`` logger and therefore to every
        ``histolearn.<area>`` child.
    max_bytes:
        Maximum size of each log file before rotation.
    backup_count:
        Number of historical log files to retain.

    Returns
    -------
    tuple
        The configured ``histolearn`` logger and the path of the active log file.
    """

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME
    formatter = logging.Formatter(LOG_FORMAT)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    current = _file_handler(logger)
    if current is not None and current.baseFilename != os.path.abspath(log_path):
        logger.removeHandler(current)
        current.close()
        current = None
    if current is None:
        rotating_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        rotating_handler.setFormatter(formatter)
        logger.addHandler(rotating_handler)

    has_console = any(
        type(handler) is logging.StreamHandler for handler in logger.handlers
    )
    if not has_console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    return logger, log_path
