"""
HTTP client for the record store API.

Maps HTTP failures onto the sync error taxonomy: anything the coordinator
should retry (no connection, timeouts, 5xx, 408, 429) becomes
``TransportError``; a refused identity becomes ``IdentityMissingError``;
any other 4xx is a ``RejectedChangeError``.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple

import requests

from filmsync.client.config import get_api_base_url
from filmsync.core.errors import IdentityMissingError, RejectedChangeError, TransportError
from filmsync.core.records import FilmStatusRecord, PreferencesRecord
from filmsync.database.crud import DeleteOutcome, UpsertOutcome

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429}


class RecordStoreClient:
    """
    Thin wrapper around the record store endpoints for one signed-in user.

    Args:
        base_url: API base URL (default: $API_BASE_URL)
        user_id: Identity sent with every request
        timeout: Request timeout in seconds
        session: Object with a ``requests.Session``-like ``request`` method
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: float = 10,
        session=None
    ):
        self.base_url = (base_url or get_api_base_url()).rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        if not self.user_id:
            raise IdentityMissingError("No signed-in user")
        headers = {"X-User-Id": self.user_id}
        try:
            r = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if r.status_code >= 500 or r.status_code in RETRYABLE_STATUS:
            raise TransportError(
                f"{method} {path} returned {r.status_code}", status_code=r.status_code
            )
        if r.status_code == 401:
            raise IdentityMissingError(f"{method} {path}: identity refused")
        if r.status_code >= 400:
            raise RejectedChangeError(
                f"{method} {path} rejected ({r.status_code}): {r.text}",
                status_code=r.status_code,
            )
        return r.json()

    # ==================== ACCOUNT ====================

    def get_user(self) -> dict:
        """Get (creating on first call) the signed-in user's record."""
        return self._request("GET", "/api/user")

    def delete_account(self) -> bool:
        """Delete the user and all of their records from the store."""
        return self._request("DELETE", "/api/user")["deleted"]

    # ==================== FILM STATUSES ====================

    def push_film_status(
        self,
        record: FilmStatusRecord
    ) -> Tuple[UpsertOutcome, FilmStatusRecord]:
        """
        Conditionally upsert one film status.

        Returns:
            Tuple of (outcome, record now stored in the record store)
        """
        body = record.model_dump(mode="json", exclude={"film_id"})
        data = self._request("PUT", f"/api/user/film-statuses/{record.film_id}", json=body)
        return UpsertOutcome(data["outcome"]), FilmStatusRecord.model_validate(data["record"])

    def delete_film_status(
        self,
        film_id: str,
        updated_at: Optional[datetime] = None
    ) -> DeleteOutcome:
        """Remove a film status unless the store holds a newer write."""
        params = {"updated_at": updated_at.isoformat()} if updated_at else None
        data = self._request("DELETE", f"/api/user/film-statuses/{film_id}", params=params)
        return DeleteOutcome(data["outcome"])

    # ==================== PREFERENCES ====================

    def push_preferences(
        self,
        record: PreferencesRecord
    ) -> Tuple[UpsertOutcome, PreferencesRecord]:
        """Conditionally upsert preferences; returns (outcome, stored record)."""
        data = self._request("PUT", "/api/user/preferences", json=record.model_dump(mode="json"))
        return UpsertOutcome(data["outcome"]), PreferencesRecord.model_validate(data["record"])

    # ==================== SYNC ====================

    def fetch_changes(
        self,
        since: Optional[datetime] = None
    ) -> Tuple[List[FilmStatusRecord], Optional[PreferencesRecord]]:
        """
        Get the records changed after a watermark.

        Args:
            since: Watermark; None fetches everything

        Returns:
            Tuple of (film status records, preferences or None)
        """
        params = {"since": since.isoformat()} if since else None
        data = self._request("GET", "/api/user/changes", params=params)
        return _parse_state(data)

    def full_sync(
        self,
        films: Iterable[FilmStatusRecord],
        preferences: Optional[PreferencesRecord] = None
    ) -> Tuple[List[FilmStatusRecord], Optional[PreferencesRecord]]:
        """
        Send the complete local state and receive the merged server state.

        Returns:
            Tuple of (every stored film status, stored preferences or None)
        """
        body = {
            "film_statuses": [r.model_dump(mode="json") for r in films],
            "preferences": preferences.model_dump(mode="json") if preferences else None,
        }
        data = self._request("POST", "/api/user/sync", json=body)
        logger.debug(
            "Full sync: %d applied, %d stale", data.get("processed", 0), data.get("skipped", 0)
        )
        return _parse_state(data)


def _parse_state(data: dict) -> Tuple[List[FilmStatusRecord], Optional[PreferencesRecord]]:
    films = [FilmStatusRecord.model_validate(item) for item in data.get("film_statuses", [])]
    prefs = data.get("preferences")
    return films, PreferencesRecord.model_validate(prefs) if prefs else None
