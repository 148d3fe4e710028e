"""
Versioned preference and filter schema.

The stored blobs carry a ``schema_version``. Older shapes are upgraded by
``migrate_preferences`` one step at a time, so changing the shape later means
adding a migration rather than guessing at runtime.

Version history:
    1: flat camelCase blobs without a version marker
    2: snake_case keys, explicit ``schema_version``
"""

import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from filmsync.core.records.timestamps import EPOCH, ensure_utc

CURRENT_SCHEMA_VERSION = 2

DefaultView = Literal["list", "grid"]
DateRange = Literal["today", "tomorrow", "week", "weekend", "all"]
ProgrammingType = Literal["repertory", "new_release", "special_event", "preview"]
TimeOfDay = Literal["morning", "afternoon", "evening", "late_night"]


class Preferences(BaseModel):
    """Cinema selection and view settings."""

    selected_cinemas: List[str] = Field(default_factory=list)
    default_view: DefaultView = "list"
    show_repertory_only: bool = False
    hide_past_screenings: bool = True
    default_date_range: DateRange = "all"
    preferred_formats: List[str] = Field(default_factory=list)


class PersistedFilters(BaseModel):
    """Filter defaults that survive across sessions (search text and dates do not)."""

    cinema_ids: List[str] = Field(default_factory=list)
    formats: List[str] = Field(default_factory=list)
    programming_types: List[ProgrammingType] = Field(default_factory=list)
    decades: List[str] = Field(default_factory=list)
    genres: List[str] = Field(default_factory=list)
    times_of_day: List[TimeOfDay] = Field(default_factory=list)
    hide_seen: bool = False
    hide_not_interested: bool = True


class PreferencesRecord(BaseModel):
    """The single preferences row of a user."""

    schema_version: int = CURRENT_SCHEMA_VERSION
    preferences: Preferences = Field(default_factory=Preferences)
    persisted_filters: PersistedFilters = Field(default_factory=PersistedFilters)
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def _to_utc(cls, value):
        return ensure_utc(value)

    @field_validator("schema_version")
    @classmethod
    def _known_version(cls, value):
        if value != CURRENT_SCHEMA_VERSION:
            raise ValueError(
                f"schema_version {value} must be migrated to {CURRENT_SCHEMA_VERSION}"
            )
        return value

    @classmethod
    def default(cls, updated_at: datetime = EPOCH) -> "PreferencesRecord":
        """Defaults used before the first preference write."""
        return cls(updated_at=updated_at)

    @classmethod
    def from_stored(
        cls,
        preferences: Optional[Dict[str, Any]],
        persisted_filters: Optional[Dict[str, Any]],
        updated_at: datetime,
        schema_version: Optional[int] = None,
    ) -> "PreferencesRecord":
        """Build a record from stored blobs, upgrading them if needed."""
        prefs, filters = migrate_preferences(
            preferences or {}, persisted_filters or {}, schema_version
        )
        return cls(
            preferences=Preferences.model_validate(prefs),
            persisted_filters=PersistedFilters.model_validate(filters),
            updated_at=updated_at,
        )


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_keys(blob: Dict[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_BOUNDARY.sub("_", key).lower(): value for key, value in blob.items()}


def _v1_to_v2(
    preferences: Dict[str, Any], filters: Dict[str, Any]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    return _snake_keys(preferences), _snake_keys(filters)


Migration = Callable[
    [Dict[str, Any], Dict[str, Any]], Tuple[Dict[str, Any], Dict[str, Any]]
]

# version -> step that upgrades it to version + 1
MIGRATIONS: Dict[int, Migration] = {
    1: _v1_to_v2,
}


def migrate_preferences(
    preferences: Dict[str, Any],
    persisted_filters: Dict[str, Any],
    schema_version: Optional[int] = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Upgrade stored preference/filter blobs to the current schema version.

    Args:
        preferences: Stored preferences blob
        persisted_filters: Stored filters blob
        schema_version: Version the blobs were written with (``None`` means 1)

    Returns:
        Tuple of (preferences, persisted_filters) in the current shape

    Raises:
        ValueError: If the version is newer than this code understands
    """
    version = schema_version or 1
    if version > CURRENT_SCHEMA_VERSION:
        raise ValueError(
            f"Preferences schema version {version} is newer than supported "
            f"version {CURRENT_SCHEMA_VERSION}"
        )
    prefs, filters = dict(preferences), dict(persisted_filters)
    while version < CURRENT_SCHEMA_VERSION:
        prefs, filters = MIGRATIONS[version](prefs, filters)
        version += 1
    return prefs, filters
