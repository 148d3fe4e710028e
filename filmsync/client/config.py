"""
Sync client configuration loaded from environment or defaults.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


def get_api_base_url() -> str:
    """Get record store API base URL from env or default."""
    return os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")


def get_local_state_path() -> str:
    """Get path of the local SQLite state file."""
    return os.getenv("LOCAL_STATE_PATH", "") or str(
        Path.home() / ".filmsync" / "state.db"
    )


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class SyncSettings:
    """
    Tunables of the sync client.

    Attributes:
        api_base_url: Record store API base URL
        local_state_path: SQLite file holding the local cache and outbound queue
        request_timeout: Seconds before a push or pull counts as a transport failure
        pull_interval: Seconds between scheduled pulls
        debounce_seconds: Delay between a local edit and the push it triggers
        backoff_base: First retry delay after a failed push, in seconds
        backoff_cap: Upper bound of the retry delay, in seconds
        backoff_jitter: Fraction of random spread applied to each delay
        degraded_after: Seconds of continuous failure before sync reports degraded
    """

    api_base_url: str = field(default_factory=get_api_base_url)
    local_state_path: str = field(default_factory=get_local_state_path)
    request_timeout: float = 10.0
    pull_interval: float = 60.0
    debounce_seconds: float = 0.5
    backoff_base: float = 1.0
    backoff_cap: float = 300.0
    backoff_jitter: float = 0.1
    degraded_after: float = 600.0

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from SYNC_* environment variables."""
        return cls(
            request_timeout=_env_float("SYNC_REQUEST_TIMEOUT", 10.0),
            pull_interval=_env_float("SYNC_PULL_INTERVAL", 60.0),
            debounce_seconds=_env_float("SYNC_DEBOUNCE_SECONDS", 0.5),
            backoff_base=_env_float("SYNC_BACKOFF_BASE", 1.0),
            backoff_cap=_env_float("SYNC_BACKOFF_CAP", 300.0),
            degraded_after=_env_float("SYNC_DEGRADED_AFTER", 600.0),
        )
