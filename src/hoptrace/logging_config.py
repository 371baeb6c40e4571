"""
Logging configuration for HopTrace.

Report lines are the program's output and go to stdout; diagnostics go to
stderr and, optionally, to a rotating log file whose records carry the
probe's hop limit and sequence number when the caller supplies them.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

PACKAGE_LOGGER = "hoptrace"

DEFAULT_LOG_PATH = Path.home() / ".hoptrace" / "logs" / "hoptrace.log"

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-26s | ttl=%(hop_limit)-3s | "
    "seq=%(sequence)-5s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes a caller may pass through ``extra=``
PROBE_FIELDS = ("hop_limit", "sequence")


class ProbeFormatter(logging.Formatter):
    """Formatter that tolerates records logged without probe fields."""

    def format(self, record: logging.LogRecord) -> str:
        for name in PROBE_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return super().format(record)


def setup_logging(
    level: str = "WARNING",
    log_file: str | Path | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    enable_console: bool = True,
    enable_file: bool = False,
) -> logging.Logger:
    """
    Attach handlers to the package logger.

    Args:
        level: Level name for the package logger and its console handler
        log_file: Log file path (defaults to ~/.hoptrace/logs/hoptrace.log)
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files to keep
        enable_console: Log to stderr
        enable_file: Log to the rotating file at DEBUG regardless of level

    Returns:
        The ``hoptrace`` logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    level_no = getattr(logging, level.upper())
    logger.handlers.clear()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level_no)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)

    if enable_file:
        log_path = Path(log_file) if log_file else DEFAULT_LOG_PATH
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(ProbeFormatter(FILE_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)
        level_no = min(level_no, logging.DEBUG)

    logger.setLevel(level_no)
    logger.propagate = False
    return logger


def configure_logging(debug: bool = False, log_file: str | None = None) -> None:
    """
    CLI entry point: warnings only by default, everything with ``debug``.

    Args:
        debug: Show DEBUG records on stderr
        log_file: Also write every record to this file
    """
    setup_logging(
        level="DEBUG" if debug else "WARNING",
        log_file=log_file,
        enable_file=log_file is not None,
    )


class ErrorTracker:
    """Counts transport failures by type and keeps the latest of each."""

    def __init__(self):
        self.errors: dict[str, int] = {}
        self.last: dict[str, str] = {}
        self.logger = logging.getLogger(__name__)

    def log_error(
        self,
        error_type: str,
        message: str,
        exception: Exception | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Count and log a failure.

        Args:
            error_type: Failure category (e.g., 'probe_send_failed', 'socket_error')
            message: Human readable description
            exception: Underlying exception, logged with its traceback
            context: Probe fields; ``hop_limit`` and ``sequence`` are attached
                to the log record
        """
        self.errors[error_type] = self.errors.get(error_type, 0) + 1
        self.last[error_type] = f"{message}: {exception}" if exception else message

        context = context or {}
        extra = {name: context[name] for name in PROBE_FIELDS if name in context}
        self.logger.error(f"{error_type}: {message}", exc_info=exception, extra=extra)

    def get_error_counts(self) -> dict[str, int]:
        return self.errors.copy()

    def reset_counts(self) -> None:
        self.errors.clear()
        self.last.clear()


_error_tracker = ErrorTracker()


def track_error(
    error_type: str,
    message: str,
    exception: Exception | None = None,
    context: dict[str, Any] | None = None,
) -> None:
    """Record a failure on the process-wide tracker."""
    _error_tracker.log_error(error_type, message, exception, context)


def get_error_stats() -> dict[str, int]:
    """Failure counts by type since start or the last reset."""
    return _error_tracker.get_error_counts()


def get_last_errors() -> dict[str, str]:
    """Most recent message for each failure type."""
    return _error_tracker.last.copy()


def reset_error_stats() -> None:
    _error_tracker.reset_counts()
