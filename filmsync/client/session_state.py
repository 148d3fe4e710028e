"""
Sync session lifecycle: one cache and one coordinator per signed-in user.

Created at app start (anonymous, local-only) or at sign-in, and torn down
at sign-out. Nothing here is module-global, so tests and multiple app
windows each get their own session.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from filmsync.client.api_client import RecordStoreClient
from filmsync.client.config import SyncSettings
from filmsync.client.coordinator import SyncCoordinator, SyncStatus
from filmsync.client.local_store import LocalStateCache
from filmsync.client.persistence import PersistenceBackend, open_persistence
from filmsync.core.records import utc_now

logger = logging.getLogger(__name__)


class SyncSession:
    """
    Explicit container for the client-side sync state.

    Usage:
        with SyncSession.open("user_1") as session:
            session.cache.set_status("film-1", "seen")
    """

    def __init__(
        self,
        cache: LocalStateCache,
        settings: SyncSettings,
        client: Optional[RecordStoreClient] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.cache = cache
        self.settings = settings
        self.client = client
        self._clock = clock
        self.coordinator: Optional[SyncCoordinator] = None
        if client is not None and cache.user_id:
            self.coordinator = SyncCoordinator(cache, client, settings, clock=clock)

    @property
    def user_id(self) -> Optional[str]:
        """Signed-in user, or None for an anonymous session."""
        return self.cache.user_id

    @classmethod
    def open(
        cls,
        user_id: Optional[str] = None,
        settings: Optional[SyncSettings] = None,
        persistence: Optional[PersistenceBackend] = None,
        client: Optional[RecordStoreClient] = None,
        start: bool = False,
        clock: Callable[[], datetime] = utc_now
    ) -> "SyncSession":
        """
        Open the local state and, for a signed-in user, prepare sync.

        Args:
            user_id: Signed-in user; None opens a local-only session
            settings: Sync settings (default: from environment)
            persistence: Local storage (default: SQLite file at settings.local_state_path)
            client: Record store client (default: requests-based client for user_id)
            start: Start the background coordinator immediately
            clock: Timestamp source for local writes and status

        Returns:
            SyncSession
        """
        settings = settings or SyncSettings.from_env()
        if persistence is None:
            persistence = open_persistence(settings.local_state_path)
        cache = LocalStateCache(persistence, user_id=user_id, clock=clock)
        if user_id and client is None:
            client = RecordStoreClient(
                base_url=settings.api_base_url,
                user_id=user_id,
                timeout=settings.request_timeout,
            )
        session = cls(cache, settings, client=client, clock=clock)
        logger.info("Opened sync session for %s", user_id or "anonymous user")
        if start:
            session.start()
        return session

    def sign_in(
        self,
        user_id: str,
        client: Optional[RecordStoreClient] = None,
        start: bool = True
    ) -> None:
        """
        Attach an identity to an anonymous session and start syncing.

        Local work done before sign-in is queued for the first sync.
        """
        if self.user_id == user_id:
            return
        if self.user_id is not None:
            raise ValueError("Session already belongs to another user; close it first")
        self.cache.bind_user(user_id)
        self.client = client or RecordStoreClient(
            base_url=self.settings.api_base_url,
            user_id=user_id,
            timeout=self.settings.request_timeout,
        )
        self.coordinator = SyncCoordinator(self.cache, self.client, self.settings, clock=self._clock)
        logger.info("Signed in %s", user_id)
        if start:
            self.start()

    def start(self) -> None:
        if self.coordinator is not None:
            self.coordinator.start()

    def status(self) -> Optional[SyncStatus]:
        """Sync health, or None for a local-only session."""
        return self.coordinator.status() if self.coordinator else None

    def close(self, clear_local: bool = False) -> None:
        """
        Tear the session down (sign-out).

        Args:
            clear_local: Also wipe local records and queued changes, for
                shared devices
        """
        if self.coordinator is not None:
            self.coordinator.stop()
        if clear_local:
            self.cache.clear()
        self.cache.close()
        logger.info("Closed sync session for %s", self.user_id or "anonymous user")

    def __enter__(self) -> "SyncSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
