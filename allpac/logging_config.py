"""
Logging setup for allpac.

Every run appends to a rotating log file (by default
~/.allpac/logs/allpac.log, chosen by the CLI) at DEBUG, so backend
commands and their exit codes can be reconstructed after a failed update.
The console only shows the requested level, on stderr, so command output
on stdout stays clean for piping.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


# Global logger instance
_logger: Optional[logging.Logger] = None

LOGGER_NAME = "allpac"

LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname_colored)s %(message)s"


def _env_enabled(name: str) -> bool:
    return os.environ.get(name, "1") != "0"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> logging.Logger:
    """
    Configure the allpac logger.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Log file path; rotated once it exceeds max_bytes
        verbose: Show DEBUG output on the console
        quiet: No console output (log file only)
        propagate: Allow log propagation (useful for testing)
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated log files to keep

    Returns:
        Configured logger instance
    """
    global _logger

    if verbose:
        console_level = logging.DEBUG
    elif quiet:
        console_level = logging.WARNING
    else:
        console_level = getattr(logging, level.upper())

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(console_level)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(ColoredFormatter(
            CONSOLE_FORMAT,
            use_colors=_env_enabled("ALLPAC_COLOR") and sys.stderr.isatty(),
            use_symbols=_env_enabled("ALLPAC_EMOJI"),
        ))
        logger.addHandler(console_handler)

    if log_file:
        file_handler = _open_log_file(log_file, max_bytes, backup_count)
        if file_handler is not None:
            logger.addHandler(file_handler)
            logger.setLevel(logging.DEBUG)

    logger.propagate = propagate

    _logger = logger
    if log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        logger.warning(f"Cannot write log file {log_file}; logging to the console only")
    return logger


def _open_log_file(log_file: str, max_bytes: int, backup_count: int) -> Optional[RotatingFileHandler]:
    """DEBUG-level rotating handler, or None if the file cannot be opened."""
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    except OSError:
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def get_logger() -> logging.Logger:
    """
    Get the configured logger instance.

    If logging hasn't been set up, initializes with defaults.
    """
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


class ColoredFormatter(logging.Formatter):
    """
    Console formatter that marks each record with its level.

    The marker is a symbol plus the level name; colors and symbols can be
    switched off independently (ALLPAC_COLOR=0, ALLPAC_EMOJI=0).
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
    }
    RESET = '\033[0m'

    SYMBOLS = {
        'DEBUG': '🔍',
        'INFO': '✓',
        'WARNING': '⚠️',
        'ERROR': '✗',
        'CRITICAL': '🚨',
    }

    def __init__(self, fmt: str, use_colors: bool = True, use_symbols: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors
        self.use_symbols = use_symbols

    def format(self, record: logging.LogRecord) -> str:
        marker = record.levelname
        if self.use_symbols and record.levelname in self.SYMBOLS:
            marker = f"{self.SYMBOLS[record.levelname]} {marker}"
        if self.use_colors:
            marker = f"{self.COLORS.get(record.levelname, '')}{marker}{self.RESET}"
        record.levelname_colored = marker
        return super().format(record)
