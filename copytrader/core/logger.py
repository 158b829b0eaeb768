"""Core logging setup module.

All engine modules log through ``logging.getLogger(__name__)`` under the
``copytrader`` namespace; ``setup_logging`` attaches the handlers once per
process.
"""
from __future__ import annotations

import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path


_LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# Third-party loggers that are chatty at DEBUG level
_NOISY_LOGGERS: tuple[str, ...] = ("aiosqlite", "asyncio")

LOG_LEVEL_ENV = "COPYTRADER_LOG_LEVEL"


def setup_logging(
    name: str = "copytrader",
    level: str = "INFO",
    log_dir: str | None = None,
) -> logging.Logger:
    """Configure the package logger with console and optional file output.

    ``COPYTRADER_LOG_LEVEL`` in the environment overrides *level*, so a
    deployment can raise verbosity without editing the YAML config.

    Args:
        name: Root logger name for the package.
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        log_dir: Directory for the daily rolling log file; no file output
            when omitted.

    Returns:
        The configured logger.
    """
    level = os.environ.get(LOG_LEVEL_ENV, level)
    logger = logging.getLogger(name)
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    if not logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(console)

        # Daily rolling file, one per logger name
        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            file_handler = TimedRotatingFileHandler(
                filename=log_path / f"{name}.log",
                when="midnight",
                backupCount=30,
                encoding="utf-8",
            )
            file_handler.suffix = "%Y-%m-%d"
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            logger.addHandler(file_handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    return logger
