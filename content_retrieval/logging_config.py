"""Logging setup for content_retrieval.

Modules get their logger via::

    from .logging_config import get_logger
    logger = get_logger(__name__)

``setup_logging()`` attaches a rotating file handler to the package logger.
The file path and level come from ``CONTENT_RETRIEVAL_LOG_FILE`` and
``CONTENT_RETRIEVAL_LOG_LEVEL``. Without it, records propagate to whatever
the host application configured.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER = "content_retrieval"
LOG_FILE = os.environ.get("CONTENT_RETRIEVAL_LOG_FILE", "content_retrieval.log")
LOG_LEVEL = os.environ.get("CONTENT_RETRIEVAL_LOG_LEVEL", "INFO")
MAX_BYTES = 10 * 1024 * 1024  # 10 MB per file
BACKUP_COUNT = 3

_initialized = False


def setup_logging(log_file: str = LOG_FILE, level: str = LOG_LEVEL) -> None:
    """Initialize the package file logger (idempotent)."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return

    handler = RotatingFileHandler(
        log_file, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
    )
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d %(message)s"
        )
    )
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package namespace."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
