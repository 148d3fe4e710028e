"""
Durable local storage for the client cache.

``SQLitePersistence`` keeps the mirrored records, the outbound queue and the
sync watermark in a local SQLite file so that queued changes survive a
restart. ``MemoryPersistence`` has the same surface and is used when no file
is wanted or when the file cannot be used.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Generator, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy import Integer, JSON, String, Text, create_engine, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from filmsync.client.queue import ChangeOp, PREFERENCES_KEY, QueueEntry, RecordKind
from filmsync.core.errors import LocalPersistenceError
from filmsync.core.records import FilmStatusRecord, PreferencesRecord, ensure_utc
from filmsync.database.types import UTCDateTime

logger = logging.getLogger(__name__)


@dataclass
class LocalSnapshot:
    """Everything the cache needs to resume after a restart."""

    user_id: Optional[str] = None
    films: Dict[str, FilmStatusRecord] = field(default_factory=dict)
    preferences: Optional[PreferencesRecord] = None
    queue: Dict[str, QueueEntry] = field(default_factory=dict)
    watermark: Optional[datetime] = None


class PersistenceBackend(Protocol):
    def load(self) -> LocalSnapshot: ...
    def save_user(self, user_id: Optional[str]) -> None: ...
    def save_film(self, record: FilmStatusRecord) -> None: ...
    def delete_film(self, film_id: str) -> None: ...
    def save_preferences(self, record: PreferencesRecord) -> None: ...
    def save_entry(self, entry: QueueEntry) -> None: ...
    def delete_entry(self, key: str) -> None: ...
    def save_watermark(self, watermark: Optional[datetime]) -> None: ...
    def clear(self) -> None: ...
    def close(self) -> None: ...


class MemoryPersistence:
    """In-process storage; contents live as long as the object."""

    durable = False

    def __init__(self, snapshot: Optional[LocalSnapshot] = None):
        snapshot = snapshot or LocalSnapshot()
        self._user_id = snapshot.user_id
        self._films = dict(snapshot.films)
        self._preferences = snapshot.preferences
        self._queue = dict(snapshot.queue)
        self._watermark = snapshot.watermark

    def load(self) -> LocalSnapshot:
        return LocalSnapshot(
            user_id=self._user_id,
            films=dict(self._films),
            preferences=self._preferences,
            queue=dict(self._queue),
            watermark=self._watermark,
        )

    def save_user(self, user_id):
        self._user_id = user_id

    def save_film(self, record):
        self._films[record.film_id] = record

    def delete_film(self, film_id):
        self._films.pop(film_id, None)

    def save_preferences(self, record):
        self._preferences = record

    def save_entry(self, entry):
        self._queue[entry.key] = entry

    def delete_entry(self, key):
        self._queue.pop(key, None)

    def save_watermark(self, watermark):
        self._watermark = watermark

    def clear(self):
        self._user_id = None
        self._films.clear()
        self._preferences = None
        self._queue.clear()
        self._watermark = None

    def close(self):
        pass


# ==================== SQLITE SCHEMA ====================

class LocalBase(DeclarativeBase):
    """Base class for the client-side tables (separate from the server schema)."""
    pass


class LocalRecordRow(LocalBase):
    """Mirrored record, stored as its JSON form."""
    __tablename__ = 'local_records'

    kind: Mapped[str] = mapped_column(String(20), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)


class OutboundRow(LocalBase):
    """Outbound queue entry; the primary key enforces one entry per record."""
    __tablename__ = 'outbound_queue'

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    op: Mapped[str] = mapped_column(String(10), nullable=False)
    film_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class SyncStateRow(LocalBase):
    """Scalar sync state (owning user id, watermark)."""
    __tablename__ = 'sync_state'

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SQLitePersistence:
    """
    Local state in a SQLite file.

    Every SQLAlchemy error is re-raised as ``LocalPersistenceError`` so the
    cache can fall back to memory without knowing about the database.
    """

    durable = True

    def __init__(self, path: str):
        self.path = path
        try:
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{os.path.abspath(path)}",
                connect_args={"check_same_thread": False},
            )
            LocalBase.metadata.create_all(bind=self.engine)
        except (OSError, SQLAlchemyError) as e:
            raise LocalPersistenceError(f"Cannot open local state at {path}: {e}") from e
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False)

    @contextmanager
    def _session_scope(self) -> Generator[Session, None, None]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise LocalPersistenceError(f"Local state write failed: {e}") from e
        finally:
            session.close()

    def _set_state(self, session: Session, name: str, value: Optional[str]) -> None:
        session.merge(SyncStateRow(name=name, value=value))

    def load(self) -> LocalSnapshot:
        """Read the whole local state."""
        snapshot = LocalSnapshot()
        try:
            with self._session_scope() as session:
                for row in session.query(LocalRecordRow).all():
                    if row.kind == RecordKind.FILM.value:
                        record = FilmStatusRecord.model_validate(row.payload)
                        snapshot.films[record.film_id] = record
                    elif row.kind == RecordKind.PREFERENCES.value:
                        snapshot.preferences = PreferencesRecord.from_stored(
                            row.payload.get("preferences"),
                            row.payload.get("persisted_filters"),
                            updated_at=row.payload["updated_at"],
                            schema_version=row.payload.get("schema_version"),
                        )
                for row in session.query(OutboundRow).all():
                    snapshot.queue[row.key] = QueueEntry(
                        key=row.key,
                        kind=RecordKind(row.kind),
                        op=ChangeOp(row.op),
                        updated_at=ensure_utc(row.updated_at),
                        payload=row.payload,
                        film_id=row.film_id,
                        attempts=row.attempts,
                        next_attempt_at=ensure_utc(row.next_attempt_at),
                    )
                state = {row.name: row.value for row in session.query(SyncStateRow).all()}
        except (ValidationError, ValueError, KeyError) as e:
            raise LocalPersistenceError(f"Local state at {self.path} is unreadable: {e}") from e
        snapshot.user_id = state.get("user_id")
        if state.get("watermark"):
            snapshot.watermark = ensure_utc(datetime.fromisoformat(state["watermark"]))
        return snapshot

    def save_user(self, user_id):
        with self._session_scope() as session:
            self._set_state(session, "user_id", user_id)

    def save_film(self, record):
        with self._session_scope() as session:
            session.merge(LocalRecordRow(
                kind=RecordKind.FILM.value,
                key=record.film_id,
                payload=record.model_dump(mode="json"),
            ))

    def delete_film(self, film_id):
        with self._session_scope() as session:
            session.execute(delete(LocalRecordRow).where(
                LocalRecordRow.kind == RecordKind.FILM.value,
                LocalRecordRow.key == film_id,
            ))

    def save_preferences(self, record):
        with self._session_scope() as session:
            session.merge(LocalRecordRow(
                kind=RecordKind.PREFERENCES.value,
                key=PREFERENCES_KEY,
                payload=record.model_dump(mode="json"),
            ))

    def save_entry(self, entry):
        with self._session_scope() as session:
            session.merge(OutboundRow(
                key=entry.key,
                kind=entry.kind.value,
                op=entry.op.value,
                film_id=entry.film_id,
                payload=entry.payload,
                updated_at=entry.updated_at,
                attempts=entry.attempts,
                next_attempt_at=entry.next_attempt_at,
            ))

    def delete_entry(self, key):
        with self._session_scope() as session:
            session.execute(delete(OutboundRow).where(OutboundRow.key == key))

    def save_watermark(self, watermark):
        with self._session_scope() as session:
            self._set_state(session, "watermark", watermark.isoformat() if watermark else None)

    def clear(self):
        with self._session_scope() as session:
            session.execute(delete(LocalRecordRow))
            session.execute(delete(OutboundRow))
            session.execute(delete(SyncStateRow))

    def close(self):
        self.engine.dispose()


def open_persistence(path: Optional[str]) -> PersistenceBackend:
    """
    Open the durable local store, or fall back to memory.

    Args:
        path: SQLite file path; None or ':memory:' selects memory storage

    Returns:
        SQLitePersistence, or MemoryPersistence if the file is unusable
    """
    if not path or path == ":memory:":
        return MemoryPersistence()
    try:
        return SQLitePersistence(path)
    except LocalPersistenceError as e:
        logger.warning("Local state unavailable, keeping state in memory only: %s", e)
        return MemoryPersistence()
