"""
Logging configuration for the filmsync server and sync client.

The API process and the client-side sync coordinator log to the console and,
optionally, to a rotating file under ``LOG_DIR``.
"""

import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Libraries that are chatty at INFO
NOISY_LOGGERS = ('urllib3', 'sqlalchemy.engine', 'httpx', 'uvicorn.access')


def setup_logging(
    log_file: Optional[str] = None,
    level: str = "INFO",
    log_dir: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    quiet: Iterable[str] = NOISY_LOGGERS
) -> None:
    """
    Configure the root logger.

    Args:
        log_file: Name of log file (default: None, logs to console only)
        level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        log_dir: Directory for log files (default: $LOG_DIR or 'logs')
        max_bytes: Maximum size of log file before rotation (default: 10MB)
        backup_count: Number of backup files to keep (default: 5)
        quiet: Logger names capped at WARNING
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # Console handler (always active)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir or os.getenv("LOG_DIR", "logs"))
        log_path.mkdir(parents=True, exist_ok=True)
        full_log_path = log_path / log_file
        file_handler = RotatingFileHandler(
            full_log_path,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info("Logging to file: %s", full_log_path)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name of the logger (typically __name__)
        level: Optional logging level override

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)

    if level:
        logger.setLevel(getattr(logging, level.upper()))

    return logger


def configure_api_logging(debug: bool = False):
    """
    Configure logging for the record store API.

    Args:
        debug: Enable debug logging (default: False)
    """
    setup_logging(log_file="api.log", level="DEBUG" if debug else "INFO")


def configure_sync_logging(debug: bool = False):
    """
    Configure logging for the client-side sync coordinator.

    Args:
        debug: Enable debug logging (default: False)
    """
    setup_logging(log_file="sync.log", level="DEBUG" if debug else "INFO")
