"""
Pydantic schemas for the preferences API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from filmsync.core.records import PersistedFilters, Preferences, PreferencesRecord
from filmsync.database.crud import UpsertOutcome


class PreferencesResponse(BaseModel):
    """Stored preferences; all fields are null until the first write."""

    schema_version: Optional[int] = None
    preferences: Optional[Preferences] = None
    persisted_filters: Optional[PersistedFilters] = None
    updated_at: Optional[datetime] = None


class PreferencesUpsertResponse(BaseModel):
    """Outcome of a conditional upsert and the record now stored."""

    outcome: UpsertOutcome
    record: PreferencesRecord
