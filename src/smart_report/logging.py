"""Logging for smart-report.

Every module logs through a child of the ``smart_report`` logger obtained
with :func:`get_logger`.  Inside a pytest run nothing is configured here:
records propagate to pytest's own logging capture.  The ``smart-report``
command line calls :func:`setup_logging` to get console output, and
optionally a DEBUG log file.
"""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "smart_report"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"


def _console_level(verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """(Re)configure the ``smart_report`` logger and return it.

    *verbose* wins over *quiet*.  Handlers from an earlier call are closed
    and replaced.  The log file, when given, always records DEBUG.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    console = logging.StreamHandler()
    console.setLevel(_console_level(verbose, quiet))
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")
