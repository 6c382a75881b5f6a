"""
Sensor Relay Logging Configuration

Centralized logging setup so the engine, the HTTP layer and the CLI all
log the same way.

Usage:
    from utils.logging_config import setup_logging
    setup_logging(level="DEBUG", log_file="/var/log/sensor-relay.log")

Modules just use:
    logger = logging.getLogger(__name__)
"""

import logging
import logging.handlers
import sys
import threading
from pathlib import Path
from typing import Optional, Union

_initialized = False
_lock = threading.Lock()

DEFAULT_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
DEBUG_FORMAT = "%(asctime)s | %(threadName)s | %(name)s:%(lineno)d | %(levelname)s | %(message)s"

LEVEL_COLORS = {
    'DEBUG': '\033[36m',     # Cyan
    'INFO': '\033[32m',      # Green
    'WARNING': '\033[33m',   # Yellow
    'ERROR': '\033[31m',     # Red
    'CRITICAL': '\033[35m',  # Magenta
}
RESET = '\033[0m'

NOISY_LIBS = ('werkzeug', 'urllib3', 'asyncio')


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to log levels for terminal output."""

    def __init__(self, fmt=None, datefmt=None, use_colors=True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record):
        if self.use_colors and record.levelname in LEVEL_COLORS:
            # Copy so other handlers see the plain level name
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{LEVEL_COLORS[record.levelname]}{record.levelname}{RESET}"
        return super().format(record)


def parse_level(level: Union[int, str]) -> int:
    """Accept logging.DEBUG or 'debug'."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    use_colors: bool = True,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
    suppress_libs: bool = True,
    force: bool = False,
) -> None:
    """
    Configure the root logger once.

    Args:
        level: Logging level (int or name)
        log_file: Optional file path, rotated at max_bytes
        use_colors: Colored level names when stdout is a terminal
        max_bytes: Max log file size before rotation
        backup_count: Number of rotated files to keep
        suppress_libs: Raise noisy third-party loggers to WARNING
        force: Reconfigure even if already initialized
    """
    global _initialized

    with _lock:
        if _initialized and not force:
            return

        level = parse_level(level)
        log_format = DEBUG_FORMAT if level <= logging.DEBUG else DEFAULT_FORMAT

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(ColoredFormatter(log_format, use_colors=use_colors))
        root_logger.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    log_path,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                )
                file_handler.setLevel(level)
                file_handler.setFormatter(logging.Formatter(log_format))
                root_logger.addHandler(file_handler)
            except OSError as e:
                root_logger.warning(f"Cannot write log file {log_path}: {e}")

        if suppress_libs:
            for lib_name in NOISY_LIBS:
                logging.getLogger(lib_name).setLevel(logging.WARNING)

        _initialized = True
