"""
API configuration loaded from environment or defaults.
"""

import os
from pathlib import Path


def get_database_url() -> str:
    """Get database URL from env or default SQLite file."""
    return os.getenv("DATABASE_URL", "") or "sqlite:///" + str(
        Path(__file__).resolve().parents[2] / "data" / "filmsync.db"
    )


def get_log_level() -> str:
    """Get log level from env or default."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_api_host() -> str:
    """Get API host for binding."""
    return os.getenv("API_HOST", "0.0.0.0")


def get_api_port() -> int:
    """Get API port."""
    return int(os.getenv("API_PORT", "8000"))


def get_sync_rate_limit() -> int:
    """Maximum full-sync requests per client within one window."""
    return int(os.getenv("SYNC_RATE_LIMIT", "10"))


def get_sync_rate_window() -> int:
    """Length of the full-sync rate limit window in seconds."""
    return int(os.getenv("SYNC_RATE_WINDOW_SECONDS", "60"))


def get_max_batch_size() -> int:
    """Maximum number of film statuses accepted in one request."""
    return int(os.getenv("MAX_BATCH_SIZE", "500"))
