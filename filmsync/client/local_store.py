"""
Local State Cache: the client's offline-capable mirror of one user's records.

Reads and writes are synchronous and never touch the network. Each local
write is applied immediately, stamped with the local clock and queued for
the sync coordinator, keeping only the latest pending change per record.
Remote records coming back from the record store are merged with the same
last-write-wins rule the store uses, except that an exact timestamp tie
keeps the local value.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from filmsync.client.persistence import (
    LocalSnapshot,
    MemoryPersistence,
    PersistenceBackend,
)
from filmsync.client.queue import (
    ChangeOp,
    PREFERENCES_KEY,
    QueueEntry,
    RecordKind,
    film_key,
)
from filmsync.core.errors import LocalPersistenceError
from filmsync.core.records import (
    FilmSnapshot,
    FilmStatusRecord,
    PersistedFilters,
    Preferences,
    PreferencesRecord,
    WatchStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

# Smallest step used to keep local stamps strictly increasing per record
STAMP_STEP = timedelta(milliseconds=1)


@dataclass(frozen=True)
class StateChange:
    """Notification sent to cache listeners."""

    kind: RecordKind
    key: str
    origin: str  # "local" or "remote"


Listener = Callable[[StateChange], None]


class LocalStateCache:
    """
    Mirror of one user's film statuses and preferences.

    Created at app start (or sign-in) and closed at sign-out. Every instance
    owns its state, so tests can build fresh ones freely.

    Usage:
        cache = LocalStateCache(SQLitePersistence("state.db"), user_id="user_1")
        cache.set_status("film-1", "want_to_see")
        cache.set_rating("film-1", 4)
        cache.pending()  # one queued upsert for film-1
    """

    def __init__(
        self,
        persistence: Optional[PersistenceBackend] = None,
        user_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the cache and restore any persisted state.

        Args:
            persistence: Durable backend (default: memory only)
            user_id: Signed-in user; None for anonymous, local-only use
            clock: Source of the timestamps stamped on local writes
        """
        self._lock = threading.RLock()
        self._persistence = persistence if persistence is not None else MemoryPersistence()
        self._clock = clock
        self._listeners: List[Listener] = []
        self._films: Dict[str, FilmStatusRecord] = {}
        self._preferences: Optional[PreferencesRecord] = None
        self._queue: Dict[str, QueueEntry] = {}
        self._watermark: Optional[datetime] = None
        self._owner: Optional[str] = None
        self.user_id = user_id
        self._restore(user_id)

    # ==================== LIFECYCLE ====================

    @property
    def durable(self) -> bool:
        """False once the cache has fallen back to memory-only storage."""
        return getattr(self._persistence, "durable", False)

    def _restore(self, user_id: Optional[str]) -> None:
        try:
            snapshot = self._persistence.load()
        except LocalPersistenceError as e:
            self._degrade(e)
            snapshot = LocalSnapshot()

        if snapshot.user_id and user_id and snapshot.user_id != user_id:
            # State of another account: never sync it under this identity
            logger.info("Discarding local state of a different user")
            self._persist(self._persistence.clear)
            snapshot = LocalSnapshot()

        self._films = dict(snapshot.films)
        self._preferences = snapshot.preferences
        self._queue = dict(snapshot.queue) if user_id else {}
        self._watermark = snapshot.watermark
        # An anonymous open keeps the previous owner so sign-in can tell
        # whether the records belong to the account signing in
        self._owner = user_id or snapshot.user_id
        if user_id:
            self._persist(self._persistence.save_user, user_id)
        if self._queue:
            logger.info("Restored %d pending change(s) from local state", len(self._queue))

    def _degrade(self, error: Exception) -> None:
        logger.warning("Local persistence failed, continuing in memory only: %s", error)
        self._persistence = MemoryPersistence(LocalSnapshot(
            user_id=self.user_id,
            films=dict(self._films),
            preferences=self._preferences,
            queue=dict(self._queue),
            watermark=self._watermark,
        ))

    def _persist(self, operation: Callable[..., None], *args: Any) -> None:
        try:
            operation(*args)
        except LocalPersistenceError as e:
            self._degrade(e)

    def bind_user(self, user_id: str) -> None:
        """
        Attach an identity to a cache that was used anonymously.

        Every local record is queued so the offline work reaches the record
        store on the first sync. State left behind by a different account is
        discarded first.
        """
        with self._lock:
            if self._owner is not None and self._owner != user_id:
                logger.info("Discarding local state of a different user")
                self.clear()
            self._owner = user_id
            self.user_id = user_id
            self._persist(self._persistence.save_user, user_id)
            for record in self._films.values():
                if film_key(record.film_id) not in self._queue:
                    self._enqueue(self._film_entry(record))
            if self._preferences is not None and PREFERENCES_KEY not in self._queue:
                self._enqueue(self._preferences_entry(self._preferences))

    def clear(self) -> None:
        """Forget all records, pending changes and the watermark."""
        with self._lock:
            self._films.clear()
            self._preferences = None
            self._queue.clear()
            self._watermark = None
            self._owner = None
            self._persist(self._persistence.clear)

    def close(self) -> None:
        """Release the persistence backend."""
        with self._lock:
            self._listeners.clear()
            self._persistence.close()

    # ==================== LISTENERS ====================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback run after every local or remote change.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: StateChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("State listener failed for %s", change.key)

    # ==================== READS ====================

    def get_film(self, film_id: str) -> Optional[FilmStatusRecord]:
        with self._lock:
            return self._films.get(film_id)

    def films(self) -> Dict[str, FilmStatusRecord]:
        """All film statuses keyed by film id."""
        with self._lock:
            return dict(self._films)

    def films_with_status(self, status) -> List[FilmStatusRecord]:
        """Film statuses in one list, most recently changed first."""
        status = WatchStatus(status)
        with self._lock:
            records = [r for r in self._films.values() if r.status is status]
        return sorted(records, key=lambda r: r.updated_at, reverse=True)

    def preferences(self) -> PreferencesRecord:
        """Current preferences, or the defaults if none were ever written."""
        with self._lock:
            return self._preferences or PreferencesRecord.default()

    def stored_preferences(self) -> Optional[PreferencesRecord]:
        """Preferences if written locally or received from the store."""
        with self._lock:
            return self._preferences

    # ==================== LOCAL WRITES ====================

    def _stamp(self, previous: Optional[datetime]) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + STAMP_STEP
        return now

    def set_status(
        self,
        film_id: str,
        status,
        film: Optional[FilmSnapshot] = None
    ) -> FilmStatusRecord:
        """
        Create a film status or move it to a new status.

        Args:
            film_id: Film identifier
            status: WatchStatus or its string value
            film: Film metadata to snapshot into the record

        Returns:
            The stored record
        """
        status = WatchStatus(status)
        with self._lock:
            existing = self._films.get(film_id)
            now = self._stamp(existing.updated_at if existing else None)
            if existing is None:
                fields = film.model_dump() if film else {}
                record = FilmStatusRecord(
                    film_id=film_id,
                    status=status,
                    added_at=now,
                    seen_at=now if status is WatchStatus.SEEN else None,
                    updated_at=now,
                    **fields,
                )
            else:
                if status is not WatchStatus.SEEN:
                    seen_at = None
                elif existing.status is WatchStatus.SEEN:
                    seen_at = existing.seen_at
                else:
                    seen_at = now
                changes = {"status": status, "seen_at": seen_at, "updated_at": now}
                if film is not None:
                    changes.update(film.model_dump(exclude_none=True))
                record = self._revise(existing, changes)
            self._write_film(record)
        self._notify(StateChange(RecordKind.FILM, film_key(film_id), "local"))
        return record

    def set_rating(self, film_id: str, rating: Optional[int]) -> FilmStatusRecord:
        """Set or clear the 1-5 rating of an existing film status."""
        return self._edit_film(film_id, {"rating": rating})

    def set_notes(self, film_id: str, notes: Optional[str]) -> FilmStatusRecord:
        """Set or clear the notes of an existing film status."""
        return self._edit_film(film_id, {"notes": notes})

    def remove_film(self, film_id: str) -> bool:
        """
        Remove a film status and queue the removal.

        Returns:
            True if the film had a status
        """
        with self._lock:
            existing = self._films.pop(film_id, None)
            if existing is None:
                return False
            now = self._stamp(existing.updated_at)
            self._persist(self._persistence.delete_film, film_id)
            self._enqueue(QueueEntry(
                key=film_key(film_id),
                kind=RecordKind.FILM,
                op=ChangeOp.DELETE,
                updated_at=now,
                film_id=film_id,
            ))
        self._notify(StateChange(RecordKind.FILM, film_key(film_id), "local"))
        return True

    def _edit_film(self, film_id: str, changes: Dict[str, Any]) -> FilmStatusRecord:
        with self._lock:
            existing = self._films.get(film_id)
            if existing is None:
                raise KeyError(f"No status for film {film_id}")
            changes["updated_at"] = self._stamp(existing.updated_at)
            record = self._revise(existing, changes)
            self._write_film(record)
        self._notify(StateChange(RecordKind.FILM, film_key(film_id), "local"))
        return record

    @staticmethod
    def _revise(existing: FilmStatusRecord, changes: Dict[str, Any]) -> FilmStatusRecord:
        # Re-validate so ratings, lengths and seen_at rules hold on every edit
        return FilmStatusRecord.model_validate({**existing.model_dump(), **changes})

    def update_preferences(self, **changes: Any) -> PreferencesRecord:
        """Change preference fields, e.g. ``update_preferences(default_view="grid")``."""
        return self._edit_preferences("preferences", Preferences, changes)

    def update_filters(self, **changes: Any) -> PreferencesRecord:
        """Change persisted filter fields, e.g. ``update_filters(hide_seen=True)``."""
        return self._edit_preferences("persisted_filters", PersistedFilters, changes)

    def reset_preferences(self) -> PreferencesRecord:
        """Restore default preferences and filters."""
        with self._lock:
            current = self._preferences
            record = PreferencesRecord.default(
                updated_at=self._stamp(current.updated_at if current else None)
            )
            self._write_preferences(record)
        self._notify(StateChange(RecordKind.PREFERENCES, PREFERENCES_KEY, "local"))
        return record

    def _edit_preferences(self, section: str, model, changes: Dict[str, Any]) -> PreferencesRecord:
        unknown = set(changes) - set(model.model_fields)
        if unknown:
            raise ValueError(f"Unknown {section} field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            current = self.preferences()
            updated_section = model.model_validate(
                {**getattr(current, section).model_dump(), **changes}
            )
            record = current.model_copy(update={
                section: updated_section,
                "updated_at": self._stamp(
                    self._preferences.updated_at if self._preferences else None
                ),
            })
            self._write_preferences(record)
        self._notify(StateChange(RecordKind.PREFERENCES, PREFERENCES_KEY, "local"))
        return record

    def _write_film(self, record: FilmStatusRecord) -> None:
        self._films[record.film_id] = record
        self._persist(self._persistence.save_film, record)
        self._enqueue(self._film_entry(record))

    def _write_preferences(self, record: PreferencesRecord) -> None:
        self._preferences = record
        self._persist(self._persistence.save_preferences, record)
        self._enqueue(self._preferences_entry(record))

    # ==================== OUTBOUND QUEUE ====================

    @staticmethod
    def _film_entry(record: FilmStatusRecord) -> QueueEntry:
        return QueueEntry(
            key=film_key(record.film_id),
            kind=RecordKind.FILM,
            op=ChangeOp.UPSERT,
            updated_at=record.updated_at,
            payload=record.model_dump(mode="json"),
            film_id=record.film_id,
        )

    @staticmethod
    def _preferences_entry(record: PreferencesRecord) -> QueueEntry:
        return QueueEntry(
            key=PREFERENCES_KEY,
            kind=RecordKind.PREFERENCES,
            op=ChangeOp.UPSERT,
            updated_at=record.updated_at,
            payload=record.model_dump(mode="json"),
        )

    def _enqueue(self, entry: QueueEntry) -> None:
        if not self.user_id:
            return  # anonymous: local-only
        # Replacing by key is what makes a newer edit supersede a queued one
        self._queue[entry.key] = entry
        self._persist(self._persistence.save_entry, entry)

    def pending(self) -> List[QueueEntry]:
        """Queued changes, oldest first."""
        with self._lock:
            return sorted(self._queue.values(), key=lambda e: e.updated_at)

    def due(self, now: datetime) -> List[QueueEntry]:
        """Queued changes whose backoff delay has elapsed, oldest first."""
        return [entry for entry in self.pending() if entry.is_due(now)]

    def ack(self, entry: QueueEntry) -> bool:
        """
        Remove a delivered change.

        Does nothing if the key has been edited again since ``entry`` was
        taken from the queue; the newer change still has to be sent.

        Returns:
            True if the entry was removed
        """
        with self._lock:
            if not entry.same_change(self._queue.get(entry.key)):
                return False
            del self._queue[entry.key]
            self._persist(self._persistence.delete_entry, entry.key)
            return True

    drop = ack

    def defer(self, entry: QueueEntry, next_attempt_at: datetime) -> Optional[QueueEntry]:
        """Record a failed delivery attempt and when to try again."""
        with self._lock:
            if not entry.same_change(self._queue.get(entry.key)):
                return None
            deferred = self._queue[entry.key].deferred(next_attempt_at)
            self._queue[entry.key] = deferred
            self._persist(self._persistence.save_entry, deferred)
            return deferred

    # ==================== REMOTE MERGE ====================

    def apply_remote_film(self, record: FilmStatusRecord) -> bool:
        """
        Merge a film status received from the record store.

        The remote record wins only if strictly newer than both the local
        copy and any queued change for the film (ties keep the local value).

        Returns:
            True if the local copy was replaced
        """
        key = film_key(record.film_id)
        with self._lock:
            local = self._films.get(record.film_id)
            if local is not None and record.updated_at <= local.updated_at:
                return False
            pending = self._queue.get(key)
            if pending is not None and record.updated_at <= pending.updated_at:
                return False
            self._films[record.film_id] = record
            self._persist(self._persistence.save_film, record)
            if pending is not None:
                # The store already holds something newer; sending it is pointless
                del self._queue[key]
                self._persist(self._persistence.delete_entry, key)
        self._notify(StateChange(RecordKind.FILM, key, "remote"))
        return True

    def apply_remote_deletion(self, film_id: str) -> bool:
        """
        Drop a film status that no longer exists in the record store.

        Ignored while a local change for the film is still queued.

        Returns:
            True if the local copy was removed
        """
        key = film_key(film_id)
        with self._lock:
            if key in self._queue or film_id not in self._films:
                return False
            del self._films[film_id]
            self._persist(self._persistence.delete_film, film_id)
        self._notify(StateChange(RecordKind.FILM, key, "remote"))
        return True

    def apply_remote_preferences(self, record: PreferencesRecord) -> bool:
        """
        Merge preferences received from the record store (ties keep local).

        Returns:
            True if the local copy was replaced
        """
        with self._lock:
            local = self._preferences
            if local is not None and record.updated_at <= local.updated_at:
                return False
            pending = self._queue.get(PREFERENCES_KEY)
            if pending is not None and record.updated_at <= pending.updated_at:
                return False
            self._preferences = record
            self._persist(self._persistence.save_preferences, record)
            if pending is not None:
                del self._queue[PREFERENCES_KEY]
                self._persist(self._persistence.delete_entry, PREFERENCES_KEY)
        self._notify(StateChange(RecordKind.PREFERENCES, PREFERENCES_KEY, "remote"))
        return True

    # ==================== WATERMARK ====================

    @property
    def watermark(self) -> Optional[datetime]:
        """Newest ``updated_at`` seen in a successful pull."""
        with self._lock:
            return self._watermark

    def advance_watermark(self, value: datetime) -> bool:
        """
        Move the watermark forward; older values are ignored.

        Returns:
            True if the watermark moved
        """
        with self._lock:
            if self._watermark is not None and value <= self._watermark:
                return False
            self._watermark = value
            self._persist(self._persistence.save_watermark, value)
            return True
