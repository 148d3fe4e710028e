"""
FastAPI dependency injection for database session and caller identity.
"""

import logging
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from filmsync.api.config import get_database_url
from filmsync.database import crud
from filmsync.database.connection import get_db_manager

logger = logging.getLogger(__name__)


def get_db() -> Generator[Session, None, None]:
    """Yield database session for FastAPI Depends()."""
    db_manager = get_db_manager(database_url=get_database_url())
    with db_manager.session_scope() as session:
        yield session


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Identity of the caller, as asserted by the upstream auth gateway.

    Raises:
        HTTPException: 401 when no user id was supplied (no anonymous sync)
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not signed in")
    return x_user_id.strip()


def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> str:
    """Identity of the caller, with the user record created on first contact."""
    crud.ensure_user(db, user_id)
    return user_id
