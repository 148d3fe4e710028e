"""
Database initialization and schema creation.

This module provides functions to initialize and verify the record store
schema.
"""

import logging

from sqlalchemy import inspect

from filmsync.database.connection import DatabaseManager, DEFAULT_DB_PATH
from filmsync.database.models import Base

logger = logging.getLogger(__name__)


def init_database(
    db_path: str = DEFAULT_DB_PATH,
    reset: bool = False,
    database_url: str | None = None
) -> DatabaseManager:
    """
    Initialize the database and create all tables.
    
    Args:
        db_path: Path to SQLite database file
        reset: If True, drop existing tables before creating new ones
        database_url: Full SQLAlchemy URL (takes precedence over db_path)
        
    Returns:
        DatabaseManager instance
    """
    db_manager = DatabaseManager(db_path=db_path, database_url=database_url)
    
    if reset:
        logger.warning("Resetting database (dropping all tables)...")
        db_manager.reset_database()
    else:
        db_manager.create_tables()
    logger.info("Database tables ready at %s", db_manager.database_url)
    
    return db_manager


def verify_schema(db_manager: DatabaseManager) -> bool:
    """
    Verify that all tables exist in the database.
    
    Args:
        db_manager: DatabaseManager instance
        
    Returns:
        True if all tables exist, False otherwise
    """
    inspector = inspect(db_manager.engine)
    existing_tables = set(inspector.get_table_names())
    
    expected_tables = set(Base.metadata.tables)
    missing_tables = expected_tables - existing_tables
    
    if missing_tables:
        logger.error("Missing tables: %s", sorted(missing_tables))
        return False
    
    logger.info("All tables exist: %s", sorted(expected_tables))
    return True
