"""Logging configuration for PortKeeper.

Everything logs under the ``portkeeper`` logger. ``setup_logging`` attaches
a per-run log file under ``~/.portkeeper/logs`` and a console handler;
``timed`` and ``PerfTimer`` report how long scans and OS queries take.
"""

import logging
import sys
import time
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Callable, Optional

from ..config import APP_DIR

ROOT_LOGGER_NAME = 'portkeeper'
PERF_LOGGER_NAME = 'perf'

LOG_DIR = APP_DIR / "logs"

# Operations slower than this are logged as warnings
SLOW_THRESHOLD_MS = 100

DETAILED_FORMAT = logging.Formatter(
    '%(asctime)s.%(msecs)03d | %(levelname)-8s | %(threadName)-24s | %(name)-28s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

CONSOLE_FORMAT = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(message)s',
    datefmt='%H:%M:%S'
)

_log_file: Optional[Path] = None


def _new_log_file() -> Path:
    return LOG_DIR / f"portkeeper_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


def setup_logging(level: int = logging.DEBUG, console_level: int = logging.INFO) -> logging.Logger:
    """
    Configure the ``portkeeper`` logger once per process.

    Args:
        level: Level for the package logger and the log file.
        console_level: Level for the stdout handler. The CLI raises this to
            WARNING so log lines do not interleave with table output.

    Returns:
        The package logger.
    """
    global _log_file

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    log_file = _new_log_file()
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
    except OSError as e:
        print(f"Could not open log file {log_file}: {e}", file=sys.stderr)
    else:
        file_handler.setLevel(level)
        file_handler.setFormatter(DETAILED_FORMAT)
        logger.addHandler(file_handler)
        _log_file = log_file

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(CONSOLE_FORMAT)
    logger.addHandler(console_handler)

    logger.debug(f"Logging initialized. Log file: {_log_file or 'disabled'}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child of the package logger for a specific module."""
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')


def get_log_file_path() -> Optional[Path]:
    """Log file of this run, or None before setup or when the file could not be opened."""
    return _log_file


def _report_elapsed(logger: logging.Logger, label: str, elapsed_ms: float, threshold_ms: float):
    if elapsed_ms > threshold_ms:
        logger.warning(f"SLOW: {label} took {elapsed_ms:.2f}ms")
    else:
        logger.debug(f"{label} took {elapsed_ms:.2f}ms")


def timed(func: Optional[Callable] = None, *, threshold_ms: float = SLOW_THRESHOLD_MS):
    """
    Log how long a call takes.

    Usable bare (``@timed``) or with a custom slow threshold
    (``@timed(threshold_ms=500)``). Exceptions are logged with the elapsed
    time and re-raised.
    """
    def decorate(fn: Callable) -> Callable:
        @wraps(fn)
        def wrapper(*args, **kwargs):
            logger = get_logger(PERF_LOGGER_NAME)
            start = time.perf_counter()
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - start) * 1000
                logger.error(f"{fn.__qualname__} failed after {elapsed_ms:.2f}ms: {e}")
                raise
            _report_elapsed(logger, fn.__qualname__, (time.perf_counter() - start) * 1000, threshold_ms)
            return result
        return wrapper

    if func is not None:
        return decorate(func)
    return decorate


class PerfTimer:
    """Context manager timing a block; ``elapsed`` holds milliseconds after exit."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None,
                 threshold_ms: float = SLOW_THRESHOLD_MS):
        self.name = name
        self.logger = logger or get_logger(PERF_LOGGER_NAME)
        self.threshold_ms = threshold_ms
        self.start: float = 0
        self.elapsed: float = 0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = (time.perf_counter() - self.start) * 1000
        if exc_type is not None:
            self.logger.debug(f"{self.name} raised {exc_type.__name__} after {self.elapsed:.2f}ms")
        else:
            _report_elapsed(self.logger, self.name, self.elapsed, self.threshold_ms)
        return False
