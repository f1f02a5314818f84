"""
Logging configuration for the listing worker.

One named logger (``listing_worker``) carries console, rotating file and
errors-only file handlers. Module loggers under ``core`` and ``adapters`` are
attached to the same handlers by ``configure_worker_logging``, and every
record is stamped with the worker id so logs from several workers sharing a
log directory can be told apart.
"""

import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from api.config import config

LOG_DIR = Path(config.LOG_DIR)
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_LEVEL = config.LOG_LEVEL.upper()

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUPS = 5

CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(worker_id)s | %(name)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)s | %(worker_id)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Package loggers that share the worker's handlers
MODULE_LOGGERS = ("core", "adapters")


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Work on a copy so file handlers never see the escape codes
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class WorkerContextFilter(logging.Filter):
    """Stamps ``worker_id`` on every record passing through a handler."""

    def __init__(self, worker_id: str = "-"):
        super().__init__()
        self.worker_id = worker_id

    def filter(self, record):
        if not hasattr(record, "worker_id"):
            record.worker_id = self.worker_id
        return True


_context = WorkerContextFilter()


def _rotating_handler(filename: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(LOG_DIR / filename, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(_context)
    return handler


def setup_logging(name: str = "listing_worker") -> logging.Logger:
    """
    Setup and return a configured logger.

    Args:
        name: Logger name (default: listing_worker)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    console_handler.addFilter(_context)
    logger.addHandler(console_handler)

    file_format = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)
    logger.addHandler(_rotating_handler(f"{name}.log", logging.DEBUG, file_format))
    logger.addHandler(_rotating_handler(f"{name}_errors.log", logging.ERROR, file_format))

    return logger


# Create default logger
logger = setup_logging()


def configure_worker_logging(worker_id: str) -> logging.Logger:
    """Tag records with the worker id and route package loggers to the worker's handlers."""
    _context.worker_id = worker_id
    for name in MODULE_LOGGERS:
        module_logger = logging.getLogger(name)
        module_logger.setLevel(logger.level)
        module_logger.propagate = False
        for handler in logger.handlers:
            if handler not in module_logger.handlers:
                module_logger.addHandler(handler)
    return logger


def log_job_event(job_id: str, level: str, message: str, metadata: Optional[Dict[str, Any]] = None):
    """Mirror a persisted job event to the process log."""
    # Stacks stay in the event store
    details = {k: v for k, v in (metadata or {}).items() if k != "stack"}
    suffix = f" {details}" if details else ""
    if level == "error":
        logger.error(f"Job {job_id}: {message}{suffix}")
    else:
        logger.info(f"Job {job_id} [{level}]: {message}{suffix}")


def log_browser_event(session_id: str, event: str, details: str = None):
    """Log a browser automation event."""
    logger.debug(f"Browser [{session_id}] {event}: {details}" if details else f"Browser [{session_id}] {event}")
