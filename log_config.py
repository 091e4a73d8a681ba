from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

LOGGER_NAME = "power_user_weather"
SERVER_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
CLI_FORMAT = "%(levelname)s: %(message)s"
LOG_FILE_MAX_BYTES = 5_000_000
LOG_FILE_BACKUPS = 3


def configure_logging(
    default_level: str = "INFO",
    fmt: str = SERVER_FORMAT,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Attach handlers to the package logger once per process.

    ``LOG_LEVEL`` overrides ``default_level``. The console handler writes to
    ``stream`` (stderr when omitted) so command output on stdout stays clean.
    ``PRECIP_LOG_FILE`` adds a rotating file handler that always uses the full
    timestamped format.
    """
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    console = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console.setFormatter(logging.Formatter(fmt))
    logger.addHandler(console)

    log_file = os.getenv("PRECIP_LOG_FILE", "").strip()
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        file_handler.setFormatter(logging.Formatter(SERVER_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.debug("Logger configured level=%s file=%s", logging.getLevelName(level), log_file or "disabled")
    return logger
