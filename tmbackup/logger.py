"""Logging configuration for tmbackup.

This module provides logging setup and helper functions for backup runs.
Informational messages go to stdout as plain text, warnings and errors go
to stderr prefixed with their level. Optionally, messages are also written
to a gzip-rotated log file and to syslog.
"""

import gzip
import logging
import logging.handlers
import os
import re
import shutil
import sys
from pathlib import Path
from typing import Any, Optional

from tmbackup.config import LoggingConfig


# Logger name for the tmbackup package
LOGGER_NAME = "tmbackup"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}

# Itemized rsync output that is not worth showing: deletions, blank lines
# and directories/symlinks whose only change is the timestamp
RSYNC_NOISE = re.compile(r"^[*]?deleting|^$|^.[Ld]\.\.t\.\.\.\.\.\.")


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler that compresses rotated files with gzip."""

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        if not os.path.exists(source):
            return
        try:
            with open(source, "rb") as f_in:
                with gzip.open(dest, "wb") as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            # Keep the log uncompressed rather than lose it
            fallback_dest = dest[:-3] if dest.endswith(".gz") else dest
            if os.path.exists(source):
                os.rename(source, fallback_dest)


class _MaxLevelFilter(logging.Filter):
    """Pass only records below a level."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


class _ConsoleFormatter(logging.Formatter):
    """Plain message for INFO and DEBUG, ``[LEVEL] message`` otherwise."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.WARNING:
            return f"[{record.levelname}] {message}"
        return message


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    verbose: bool = False,
    syslog: bool = False,
    stdout=None,
    stderr=None,
) -> logging.Logger:
    """
    Configure logging for tmbackup.

    Sets up:
    - stdout handler for DEBUG/INFO messages
    - stderr handler for WARNING and above
    - a gzip-rotating file handler if ``config.log_file`` is set
    - a syslog handler if ``syslog`` is True

    Args:
        config: LoggingConfig with level and optional log file settings
        verbose: Show DEBUG messages on the console
        syslog: Also send messages to the local syslog daemon
        stdout: Stream for informational output (default sys.stdout)
        stderr: Stream for warnings and errors (default sys.stderr)

    Returns:
        Configured package logger

    Raises:
        LoggingError: If the level is invalid or the log directory
            cannot be created
    """
    config = config if config is not None else LoggingConfig()
    level = logging.DEBUG if verbose else _get_log_level(config.level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)  # Handlers filter

    console_formatter = _ConsoleFormatter("%(message)s")

    out_handler = logging.StreamHandler(stdout if stdout is not None else sys.stdout)
    out_handler.setLevel(level)
    out_handler.addFilter(_MaxLevelFilter(logging.WARNING))
    out_handler.setFormatter(console_formatter)
    logger.addHandler(out_handler)

    err_handler = logging.StreamHandler(stderr if stderr is not None else sys.stderr)
    err_handler.setLevel(max(level, logging.WARNING))
    err_handler.setFormatter(console_formatter)
    logger.addHandler(err_handler)

    if config.log_file is not None:
        log_file = Path(os.path.expanduser(str(config.log_file)))
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_file.parent}: {e}")
        file_handler = GzipRotatingFileHandler(
            log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    if syslog:
        logger.addHandler(_syslog_handler(level))

    return logger


def _syslog_handler(level: int) -> logging.Handler:
    address = "/dev/log" if os.path.exists("/dev/log") else "/var/run/syslog"
    if os.path.exists(address):
        handler = logging.handlers.SysLogHandler(address=address)
    else:
        handler = logging.handlers.SysLogHandler()
    handler.ident = f"{LOGGER_NAME}[{os.getpid()}]: "
    handler.setLevel(level)
    handler.setFormatter(_ConsoleFormatter("%(message)s"))
    return handler


def get_logger() -> logging.Logger:
    """Return the package logger."""
    return logging.getLogger(LOGGER_NAME)


def log_backup_start(logger: logging.Logger, source: str, destination: str) -> None:
    logger.info("backup start")
    logger.info(f"backup location: {destination}/")
    logger.info(f"backup source path: {source.rstrip('/')}/")


def log_backup_completion(logger: logging.Logger, result: Any) -> None:
    """Log a summary of a completed backup."""
    details = []
    if result.resumed:
        details.append("resumed")
    if result.reused_expired:
        details.append(f"reused {result.reused_expired}")
    if result.expired:
        details.append(f"{len(result.expired)} expired")
    if result.deleted:
        details.append(f"{len(result.deleted)} deleted")
    if result.space_retries:
        details.append(f"{result.space_retries} out-of-space retries")
    summary = f" ({', '.join(details)})" if details else ""
    logger.debug(
        f"backup {result.snapshot} finished in {result.duration_seconds:.2f}s{summary}"
    )


def log_backup_error(logger: logging.Logger, error: Exception, step: str) -> None:
    """Log a failed backup with the step it failed in."""
    logger.error(str(error))
    logger.debug(f"backup failed while {step}: {type(error).__name__}")


def log_rsync_output(logger: logging.Logger, line: str) -> bool:
    """
    Log one line of rsync output unless it is noise.

    Returns:
        True if the line was logged
    """
    line = line.rstrip("\n")
    if RSYNC_NOISE.search(line):
        return False
    logger.info(line)
    return True
