"""
Pydantic schemas for the change feed and full sync.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from filmsync.api.config import get_max_batch_size
from filmsync.core.records import FilmStatusRecord, PreferencesRecord


class ChangesResponse(BaseModel):
    """Records changed after the requested watermark."""

    film_statuses: List[FilmStatusRecord]
    preferences: Optional[PreferencesRecord] = None
    server_time: datetime


class SyncRequest(BaseModel):
    """Complete local state of a client."""

    film_statuses: List[FilmStatusRecord] = Field(
        default_factory=list, max_length=get_max_batch_size()
    )
    preferences: Optional[PreferencesRecord] = None


class SyncResponse(BaseModel):
    """Merged server state after applying the client's records."""

    film_statuses: List[FilmStatusRecord]
    preferences: Optional[PreferencesRecord] = None
    processed: int
    skipped: int
    server_time: datetime
