"""Flour-mill ledger, valuation and posting tools.

Importing the package configures the ``mill_ledger`` logger once. Postings
and loaded contexts go to a rotating file under ``.logs``; stderr only shows
warnings unless :func:`set_console_level` lowers the threshold (the CLI's
``--verbose`` flag does).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "MILL_LEDGER_LOG_DIR"
LOG_DIR = Path(os.environ.get(LOG_DIR_ENV) or PROJECT_ROOT / ".logs")
LOG_FILE = LOG_DIR / "mill_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
CONSOLE_HANDLER_NAME = "mill_ledger.console"


def _ledger_file_handler(formatter: logging.Formatter) -> logging.Handler:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    """Attach the ledger file and stderr handlers to the package logger.

    Calling it again is a no-op once handlers exist.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        logger.addHandler(_ledger_file_handler(formatter))
    except OSError as exc:
        print(f"Warning: ledger log file '{LOG_FILE}' unavailable ({exc}); logging to stderr only", file=sys.stderr)

    console = logging.StreamHandler(sys.stderr)
    console.set_name(CONSOLE_HANDLER_NAME)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


def set_console_level(level: int) -> None:
    """Change how much of the ledger log reaches stderr."""

    for handler in log.handlers:
        if handler.get_name() == CONSOLE_HANDLER_NAME:
            handler.setLevel(level)


log = _configure_logging()
log.debug("mill_ledger %s logging to %s", __version__, LOG_FILE)
