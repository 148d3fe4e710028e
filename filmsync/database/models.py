"""
SQLAlchemy ORM models for the server-side record store.

Defines the users table and the two per-user record kinds that are
synchronized with client caches: film statuses and preferences.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    Integer, String, Text, JSON, ForeignKey,
    CheckConstraint, UniqueConstraint, Index, TIMESTAMP
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from filmsync.database.types import UTCDateTime


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class User(Base):
    """
    Users table keyed by the identity provider's user id.
    
    Attributes:
        id: Stable user id issued by the identity provider
        email: Email address, if the provider shared one
        display_name: Display name, if the provider shared one
        created_at: Timestamp when record was created
        updated_at: Timestamp when record was last updated
    """
    __tablename__ = 'users'
    
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        server_default=func.current_timestamp()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp()
    )
    
    # Relationships
    film_statuses: Mapped[List["FilmStatus"]] = relationship(
        "FilmStatus",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    preferences: Mapped[Optional["UserPreferences"]] = relationship(
        "UserPreferences",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False
    )
    
    def __repr__(self) -> str:
        return f"<User(id='{self.id}', email='{self.email}')>"


class FilmStatus(Base):
    """
    A user's watch status for one film.
    
    Attributes:
        id: Primary key, auto-incremented
        user_id: Foreign key to users table
        film_id: Film identifier from the screening catalog
        status: 'want_to_see', 'seen' or 'not_interested'
        added_at: When the film was first added to any list (never overwritten)
        seen_at: When the film was marked seen (NULL unless status is 'seen')
        rating: Rating value (1 to 5)
        notes: Free-text notes
        film_title, film_year, film_directors, film_poster_url:
            Denormalized film metadata captured at write time
        updated_at: Conflict-resolution timestamp (newest write wins)
    """
    __tablename__ = 'user_film_statuses'
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False
    )
    film_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    seen_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    film_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    film_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    film_directors: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    film_poster_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    
    user: Mapped["User"] = relationship("User", back_populates="film_statuses")
    
    # Constraints and indexes
    __table_args__ = (
        CheckConstraint(
            "status IN ('want_to_see', 'seen', 'not_interested')",
            name='check_film_status'
        ),
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name='check_status_rating_range'
        ),
        UniqueConstraint('user_id', 'film_id', name='user_film_unique'),
        Index('idx_film_statuses_user_updated', 'user_id', 'updated_at'),
    )
    
    def __repr__(self) -> str:
        return f"<FilmStatus(user_id='{self.user_id}', film_id='{self.film_id}', status='{self.status}')>"


class UserPreferences(Base):
    """
    Settings and filter defaults of a user (exactly one row per user).
    
    Attributes:
        user_id: Primary key and foreign key to users table
        schema_version: Version of the preferences/persisted_filters blobs
        preferences: Cinema selection and view settings (JSON)
        persisted_filters: Filter defaults (JSON)
        updated_at: Conflict-resolution timestamp (newest write wins)
    """
    __tablename__ = 'user_preferences'
    
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey('users.id', ondelete='CASCADE'),
        primary_key=True
    )
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False)
    persisted_filters: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    
    user: Mapped["User"] = relationship("User", back_populates="preferences")
    
    def __repr__(self) -> str:
        return f"<UserPreferences(user_id='{self.user_id}', updated_at={self.updated_at})>"
