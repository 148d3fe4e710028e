"""
Database module for the server-side record store.

This module provides database models, connection management, and the
conditional-write operations for the record store using SQLAlchemy ORM.
"""

from filmsync.database.models import Base, User, FilmStatus, UserPreferences
from filmsync.database.connection import DatabaseManager, get_db_manager
from filmsync.database.init_db import init_database, verify_schema
from filmsync.database import crud

__all__ = [
    # Models
    'Base',
    'User',
    'FilmStatus',
    'UserPreferences',
    # Connection
    'DatabaseManager',
    'get_db_manager',
    # Initialization
    'init_database',
    'verify_schema',
    # CRUD module
    'crud',
]
