"""
Logging configuration for the review reminder service.

Uses QueueHandler so file writes never block the event loop; a QueueListener
performs the file I/O in a separate thread.
"""

import atexit
import logging
import logging.handlers
import queue
import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


# Global queue listener for cleanup
_queue_listener: Optional[logging.handlers.QueueListener] = None

# Loggers whose records also go to reports.log
REPORT_LOGGERS = (
    "review_reminder.services.engine",
    "review_reminder.services.report_generator",
    "review_reminder.services.notification_dispatcher",
    "review_reminder.services.channels",
)


class LogConfig(BaseModel):
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_file_logging: bool = True
    log_dir: str = "logs"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    enable_console: bool = True


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    grey = "\x1b[38;21m"
    yellow = "\x1b[33;21m"
    red = "\x1b[31;21m"
    bold_red = "\x1b[31;1m"
    blue = "\x1b[34;21m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: blue,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record):
        # Color a copy so file handlers sharing the record stay uncolored
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, self.grey)
        record.levelname = f"{color}{record.levelname}{self.reset}"
        return f"{super().format(record)}{self.reset}"


class _PrefixFilter(logging.Filter):
    """Passes records from any of the given logger name prefixes."""

    def __init__(self, prefixes: tuple):
        super().__init__()
        self.prefixes = prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(self.prefixes)


def _rotating_handler(config: LogConfig, filename: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        Path(config.log_dir) / filename,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, config.level.upper()))
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt=config.date_format,
        )
    )
    return handler


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """Setup application logging with configuration.

    - Console handler writes directly (stdout is non-blocking)
    - File handlers sit behind a QueueListener running in its own thread
    """
    global _queue_listener

    if config is None:
        config = LogConfig()

    # Stop existing listener if running
    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None

    level = getattr(logging, config.level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
                datefmt=config.date_format,
            )
        )
        root_logger.addHandler(console_handler)

    file_handlers = []

    if config.enable_file_logging:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)

        file_handlers.append(_rotating_handler(config, "app.log"))

        # Report generation and delivery get their own file
        report_handler = _rotating_handler(config, "reports.log")
        report_handler.addFilter(_PrefixFilter(REPORT_LOGGERS))
        file_handlers.append(report_handler)

    if file_handlers:
        log_queue = queue.Queue(-1)
        root_logger.addHandler(logging.handlers.QueueHandler(log_queue))

        # respect_handler_level=True ensures only relevant logs are processed
        _queue_listener = logging.handlers.QueueListener(
            log_queue,
            *file_handlers,
            respect_handler_level=True,
        )
        _queue_listener.start()
        atexit.register(stop_queue_listener)

    # Third-party chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def stop_queue_listener() -> None:
    """Stop the queue listener gracefully.

    Called automatically on exit via atexit.
    Can also be called manually during shutdown.
    """
    global _queue_listener

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None
