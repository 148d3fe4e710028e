"""
Record types shared by the record store, the HTTP API and the client cache.
"""

from filmsync.core.records.film_status import (
    FilmSnapshot,
    FilmStatusFields,
    FilmStatusRecord,
    WatchStatus,
)
from filmsync.core.records.preferences import (
    CURRENT_SCHEMA_VERSION,
    PersistedFilters,
    Preferences,
    PreferencesRecord,
    migrate_preferences,
)
from filmsync.core.records.timestamps import EPOCH, ensure_utc, utc_now

__all__ = [
    "FilmSnapshot",
    "FilmStatusFields",
    "FilmStatusRecord",
    "WatchStatus",
    "CURRENT_SCHEMA_VERSION",
    "PersistedFilters",
    "Preferences",
    "PreferencesRecord",
    "migrate_preferences",
    "EPOCH",
    "ensure_utc",
    "utc_now",
]
