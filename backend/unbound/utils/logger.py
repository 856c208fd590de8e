"""
Logging utilities.

WHAT: Root logger setup for the deal desk and per-module logger access
WHY: Deal/proof transitions and webhook failures are only observable through logs
HOW: stdlib logging with a console handler and an optional file handler;
     chatty third-party loggers are capped so transition logs stay readable
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from ..core.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs one INFO line per webhook POST
LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure application logging.

    WHAT: Console handler always; file handler when a log file is configured
    WHY: Operators tail the console, incidents are investigated from the file
    HOW: Replace root handlers so repeated calls (reloads, tests) never duplicate output

    Args:
        level: Overrides LOG_LEVEL
        log_file: Overrides LOG_FILE; an empty value disables the file handler
    """
    level_name = level or settings.LOG_LEVEL
    file_path = settings.LOG_FILE if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(_level(level_name))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_level(level_name))
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    root_logger.info(f"Logging initialized (level={level_name}, file={file_path or 'disabled'})")


def get_logger(name: str) -> logging.Logger:
    """Logger for a module (pass __name__)."""
    return logging.getLogger(name)
