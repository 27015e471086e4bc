"""Logging configuration helpers for the assessment client."""

import logging
from logging import Logger
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

import config

_FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> Logger:
    """Configure logging for the application and return the app logger.

    Logs go to ``log_file`` when one is configured, otherwise to stderr
    through rich so they do not interleave with the learner's screen.
    """
    level = (level or config.LOG_LEVEL).upper()
    log_file = config.LOG_FILE if log_file is None else log_file

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
        handler.setFormatter(logging.Formatter("%(name)s | %(message)s"))

    logging.basicConfig(level=level, handlers=[handler], force=True)
    return logging.getLogger("assessment")
