"""
Record store operations for users, film statuses and preferences.

Writes to film statuses and preferences are conditional: a row is replaced
only by a write whose ``updated_at`` is strictly newer than the stored one
(last-write-wins). The compare and the replace happen in a single
``INSERT ... ON CONFLICT DO UPDATE ... WHERE`` statement, so two writers for
the same key can never interleave into a row mixing fields from both.
Re-applying a write with the same ``updated_at`` is a no-op.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filmsync.core.records import FilmStatusRecord, PreferencesRecord, ensure_utc
from filmsync.database.models import FilmStatus, User, UserPreferences

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    """Result of a conditional upsert."""

    APPLIED = "applied"
    STALE = "stale"


class DeleteOutcome(str, Enum):
    """Result of a conditional delete."""

    DELETED = "deleted"
    STALE = "stale"
    MISSING = "missing"


# added_at is merged separately: it only ever moves to the earliest value seen
_FILM_STATUS_UPDATE_COLUMNS = (
    "status",
    "seen_at",
    "rating",
    "notes",
    "film_title",
    "film_year",
    "film_directors",
    "film_poster_url",
    "updated_at",
)


def _insert_for(session: Session, model):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Conditional upsert is not supported on {dialect}")


def _earliest(session: Session, left, right):
    """Smaller of two values, as the dialect spells it."""
    if session.get_bind().dialect.name == "postgresql":
        return func.least(left, right)
    return func.min(left, right)


# ==================== USER OPERATIONS ====================

def ensure_user(
    session: Session,
    user_id: str,
    email: Optional[str] = None,
    display_name: Optional[str] = None
) -> User:
    """
    Get a user, creating the record on first contact.

    Args:
        session: Database session
        user_id: Identity provider user id
        email: Email to store if the user is created
        display_name: Display name to store if the user is created

    Returns:
        The existing or newly created User
    """
    stmt = _insert_for(session, User).values(
        id=user_id,
        email=email,
        display_name=display_name,
    ).on_conflict_do_nothing(index_elements=["id"])
    result = session.execute(stmt)
    session.commit()
    if result.rowcount:
        logger.info("Created user record %s", user_id)
    return get_user(session, user_id)


def get_user(session: Session, user_id: str) -> Optional[User]:
    """
    Get a user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User object or None if not found
    """
    return session.get(User, user_id)


def delete_user(session: Session, user_id: str) -> bool:
    """
    Delete a user together with all of their film statuses and preferences.

    The three deletes run in one transaction: either every row of the user
    is gone afterwards or none is.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        True if the user existed, False otherwise
    """
    try:
        statuses = session.execute(
            delete(FilmStatus).where(FilmStatus.user_id == user_id)
        )
        session.execute(
            delete(UserPreferences).where(UserPreferences.user_id == user_id)
        )
        result = session.execute(delete(User).where(User.id == user_id))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    session.expire_all()
    logger.info(
        "Deleted user %s (%d film statuses)", user_id, statuses.rowcount or 0
    )
    return bool(result.rowcount)


def count_user_rows(session: Session, user_id: str) -> Dict[str, int]:
    """
    Count the record-store rows that belong to a user.

    Returns:
        Dictionary with 'film_statuses' and 'preferences' counts
    """
    statuses = session.scalar(
        select(func.count(FilmStatus.id)).where(FilmStatus.user_id == user_id)
    )
    prefs = session.scalar(
        select(func.count(UserPreferences.user_id)).where(UserPreferences.user_id == user_id)
    )
    return {"film_statuses": statuses or 0, "preferences": prefs or 0}


# ==================== FILM STATUS OPERATIONS ====================

def _film_status_values(user_id: str, record: FilmStatusRecord) -> dict:
    return {
        "user_id": user_id,
        "film_id": record.film_id,
        "status": record.status.value,
        "added_at": record.added_at,
        "seen_at": record.seen_at,
        "rating": record.rating,
        "notes": record.notes,
        "film_title": record.film_title,
        "film_year": record.film_year,
        "film_directors": record.film_directors,
        "film_poster_url": record.film_poster_url,
        "updated_at": record.updated_at,
    }


def _apply_film_status(
    session: Session,
    user_id: str,
    record: FilmStatusRecord
) -> UpsertOutcome:
    stmt = _insert_for(session, FilmStatus).values(**_film_status_values(user_id, record))
    set_ = {column: stmt.excluded[column] for column in _FILM_STATUS_UPDATE_COLUMNS}
    set_["added_at"] = _earliest(session, FilmStatus.added_at, stmt.excluded.added_at)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "film_id"],
        set_=set_,
        where=stmt.excluded.updated_at > FilmStatus.updated_at,
    )
    if session.execute(stmt).rowcount:
        return UpsertOutcome.APPLIED

    # A stale write still carries the creation time it saw, so the stored
    # row ends up the same whichever order the writes arrived in
    session.execute(
        update(FilmStatus)
        .where(
            FilmStatus.user_id == user_id,
            FilmStatus.film_id == record.film_id,
            FilmStatus.added_at > record.added_at,
        )
        .values(added_at=record.added_at)
        .execution_options(synchronize_session=False)
    )
    return UpsertOutcome.STALE


def upsert_film_status(
    session: Session,
    user_id: str,
    record: FilmStatusRecord
) -> UpsertOutcome:
    """
    Insert or conditionally replace a film status.

    Inserts when no row exists for (user_id, film_id). Otherwise replaces the
    row only if ``record.updated_at`` is strictly newer than the stored value.
    ``added_at`` keeps the earliest value any write carried.

    Args:
        session: Database session
        user_id: Owner of the record
        record: Incoming film status

    Returns:
        UpsertOutcome.APPLIED, or UpsertOutcome.STALE if the stored row won
    """
    outcome = _apply_film_status(session, user_id, record)
    session.commit()
    logger.debug(
        "Film status %s/%s at %s: %s",
        user_id, record.film_id, record.updated_at.isoformat(), outcome.value
    )
    return outcome


def put_film_status(
    session: Session,
    user_id: str,
    record: FilmStatusRecord
) -> Tuple[UpsertOutcome, FilmStatusRecord]:
    """
    Conditional upsert that also returns the row the store now holds.

    The row is read back before the commit, inside the transaction of the
    write, so a concurrent delete cannot remove it in between.

    Returns:
        Tuple of (outcome, stored record: the write itself or the newer row)
    """
    outcome = _apply_film_status(session, user_id, record)
    row = session.scalar(
        select(FilmStatus)
        .where(FilmStatus.user_id == user_id, FilmStatus.film_id == record.film_id)
        .execution_options(populate_existing=True)
    )
    stored = to_film_status_record(row)
    session.commit()
    logger.debug(
        "Film status %s/%s at %s: %s",
        user_id, record.film_id, record.updated_at.isoformat(), outcome.value
    )
    return outcome, stored


def upsert_film_statuses(
    session: Session,
    user_id: str,
    records: Iterable[FilmStatusRecord]
) -> Dict[str, int]:
    """
    Apply a batch of film statuses in one transaction.

    Each record goes through the same conditional upsert as
    ``upsert_film_status``; duplicates of a film inside the batch resolve by
    timestamp as well.

    Returns:
        Dictionary with 'processed' (applied) and 'skipped' (stale) counts
    """
    processed = skipped = 0
    try:
        for record in records:
            if _apply_film_status(session, user_id, record) is UpsertOutcome.APPLIED:
                processed += 1
            else:
                skipped += 1
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    return {"processed": processed, "skipped": skipped}


def get_film_status(
    session: Session,
    user_id: str,
    film_id: str
) -> Optional[FilmStatus]:
    """
    Get a film status by user and film.

    Returns:
        FilmStatus object or None if not found
    """
    return session.scalar(
        select(FilmStatus).where(
            FilmStatus.user_id == user_id,
            FilmStatus.film_id == film_id,
        )
    )


def get_film_statuses(
    session: Session,
    user_id: str,
    since: Optional[datetime] = None
) -> List[FilmStatus]:
    """
    Get the film statuses of a user, oldest change first.

    Args:
        session: Database session
        user_id: User ID
        since: Only return rows with updated_at strictly after this time

    Returns:
        List of FilmStatus objects
    """
    query = select(FilmStatus).where(FilmStatus.user_id == user_id)
    if since is not None:
        query = query.where(FilmStatus.updated_at > ensure_utc(since))
    query = query.order_by(FilmStatus.updated_at, FilmStatus.film_id)
    return list(session.scalars(query))


def delete_film_status(
    session: Session,
    user_id: str,
    film_id: str,
    updated_at: Optional[datetime] = None
) -> DeleteOutcome:
    """
    Remove a film status.

    When ``updated_at`` is given the removal is itself a timestamped write:
    the row is deleted only if its stored ``updated_at`` is older, so a
    removal made before a newer edit from another device does not win.

    Returns:
        DeleteOutcome.DELETED, STALE (a newer write exists) or MISSING
    """
    conditions = [FilmStatus.user_id == user_id, FilmStatus.film_id == film_id]
    if updated_at is not None:
        conditions.append(FilmStatus.updated_at < updated_at)
    result = session.execute(delete(FilmStatus).where(*conditions))
    session.commit()
    if result.rowcount:
        return DeleteOutcome.DELETED
    if get_film_status(session, user_id, film_id) is not None:
        return DeleteOutcome.STALE
    return DeleteOutcome.MISSING


# ==================== PREFERENCES OPERATIONS ====================

def _apply_preferences(
    session: Session,
    user_id: str,
    record: PreferencesRecord
) -> UpsertOutcome:
    stmt = _insert_for(session, UserPreferences).values(
        user_id=user_id,
        schema_version=record.schema_version,
        preferences=record.preferences.model_dump(mode="json"),
        persisted_filters=record.persisted_filters.model_dump(mode="json"),
        updated_at=record.updated_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "schema_version": stmt.excluded.schema_version,
            "preferences": stmt.excluded.preferences,
            "persisted_filters": stmt.excluded.persisted_filters,
            "updated_at": stmt.excluded.updated_at,
        },
        where=stmt.excluded.updated_at > UserPreferences.updated_at,
    )
    result = session.execute(stmt)
    return UpsertOutcome.APPLIED if result.rowcount else UpsertOutcome.STALE


def upsert_preferences(
    session: Session,
    user_id: str,
    record: PreferencesRecord
) -> UpsertOutcome:
    """
    Insert or conditionally replace the preferences row of a user.

    Same last-write-wins rule as ``upsert_film_status``.

    Returns:
        UpsertOutcome.APPLIED, or UpsertOutcome.STALE if the stored row won
    """
    outcome = _apply_preferences(session, user_id, record)
    session.commit()
    return outcome


def put_preferences(
    session: Session,
    user_id: str,
    record: PreferencesRecord
) -> Tuple[UpsertOutcome, PreferencesRecord]:
    """Conditional upsert returning the stored preferences, read before the commit."""
    outcome = _apply_preferences(session, user_id, record)
    row = session.scalar(
        select(UserPreferences)
        .where(UserPreferences.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    stored = to_preferences_record(row)
    session.commit()
    return outcome, stored


def get_preferences(session: Session, user_id: str) -> Optional[UserPreferences]:
    """
    Get the preferences row of a user.

    Returns:
        UserPreferences object or None if the user never wrote preferences
    """
    return session.get(UserPreferences, user_id)


# ==================== CONVERSION & CHANGE FEED ====================

def to_film_status_record(row: FilmStatus) -> FilmStatusRecord:
    """Convert an ORM row to the shared record type."""
    return FilmStatusRecord.model_validate(row)


def to_preferences_record(row: UserPreferences) -> PreferencesRecord:
    """Convert an ORM row to the shared record type, migrating old blobs."""
    return PreferencesRecord.from_stored(
        row.preferences,
        row.persisted_filters,
        updated_at=row.updated_at,
        schema_version=row.schema_version,
    )


def get_changes_since(
    session: Session,
    user_id: str,
    since: Optional[datetime] = None
) -> Tuple[List[FilmStatusRecord], Optional[PreferencesRecord]]:
    """
    Get every record of a user changed after a watermark.

    Args:
        session: Database session
        user_id: User ID
        since: Watermark; None returns everything

    Returns:
        Tuple of (film status records, preferences record or None)
    """
    since = ensure_utc(since)
    statuses = [to_film_status_record(row) for row in get_film_statuses(session, user_id, since)]
    prefs_row = get_preferences(session, user_id)
    prefs = None
    if prefs_row is not None and (since is None or prefs_row.updated_at > since):
        prefs = to_preferences_record(prefs_row)
    return statuses, prefs
