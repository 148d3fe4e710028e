"""
Database connection management using SQLAlchemy.

This module handles engine creation for the record store (SQLite by default,
PostgreSQL in production), session management, and provides utilities for
database operations.
"""

import os
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from filmsync.database.models import Base


# Default database path
DEFAULT_DB_PATH = "data/filmsync.db"


def get_database_url(db_path: str = DEFAULT_DB_PATH) -> str:
    """
    Get SQLite database URL.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy database URL
    """
    if db_path == ":memory:":
        return "sqlite://"

    # Ensure directory exists
    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    # Convert to absolute path for SQLite
    abs_path = os.path.abspath(db_path)

    # SQLite URL format: sqlite:///path/to/database.db
    return f"sqlite:///{abs_path}"


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """
    Enable foreign key constraints for SQLite.

    SQLite disables foreign key constraints by default.
    This event listener enables them for all SQLite connections.
    """
    if type(dbapi_conn).__module__.split(".")[0] != "sqlite3":
        return
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine suitable for the given URL.

    In-memory SQLite uses a StaticPool so every session sees the same
    database; file-backed SQLite allows use from the API's worker threads.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


class DatabaseManager:
    """
    Database connection manager.

    Handles engine creation, session management, and database initialization.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        echo: bool = False,
        database_url: Optional[str] = None
    ):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file (ignored if database_url is given)
            echo: If True, log all SQL statements (useful for debugging)
            database_url: Full SQLAlchemy URL, e.g. a PostgreSQL DSN
        """
        self.db_path = db_path
        self.database_url = database_url or get_database_url(db_path)
        self.engine = create_db_engine(self.database_url, echo=echo)

        # Create session factory
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine
        )

    def create_tables(self):
        """
        Create all tables defined in the models.

        This creates tables if they don't exist. Existing tables are not modified.
        """
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """
        Drop all tables defined in the models.

        WARNING: This will delete all data in the database!
        """
        Base.metadata.drop_all(bind=self.engine)

    def reset_database(self):
        """
        Drop and recreate all tables.

        WARNING: This will delete all data in the database!
        """
        self.drop_tables()
        self.create_tables()

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy Session object

        Note:
            Remember to close the session when done, or use session_scope().
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Automatically commits on success and rolls back on failure.

        Usage:
            with db_manager.session_scope() as session:
                crud.ensure_user(session, "user_123")

        Yields:
            SQLAlchemy Session object
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Close the database engine and all connections."""
        self.engine.dispose()


# Global database manager instance (singleton pattern)
_db_manager = None


def get_db_manager(
    db_path: str = DEFAULT_DB_PATH,
    echo: bool = False,
    database_url: Optional[str] = None
) -> DatabaseManager:
    """
    Get or create the global database manager instance.

    Args:
        db_path: Path to SQLite database file
        echo: If True, log all SQL statements
        database_url: Full SQLAlchemy URL (takes precedence over db_path)

    Returns:
        DatabaseManager instance
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(db_path=db_path, echo=echo, database_url=database_url)
        _db_manager.create_tables()
    return _db_manager

