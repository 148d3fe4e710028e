"""
Pydantic schemas for API request/response validation.
"""

from filmsync.api.models.user import UserResponse, AccountDeletedResponse
from filmsync.api.models.film_status import (
    FilmStatusBatch,
    FilmStatusMap,
    FilmStatusUpsertResponse,
    BatchResult,
    DeleteResponse,
)
from filmsync.api.models.preferences import PreferencesResponse, PreferencesUpsertResponse
from filmsync.api.models.sync import ChangesResponse, SyncRequest, SyncResponse

__all__ = [
    "UserResponse",
    "AccountDeletedResponse",
    "FilmStatusBatch",
    "FilmStatusMap",
    "FilmStatusUpsertResponse",
    "BatchResult",
    "DeleteResponse",
    "PreferencesResponse",
    "PreferencesUpsertResponse",
    "ChangesResponse",
    "SyncRequest",
    "SyncResponse",
]
