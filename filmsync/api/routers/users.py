"""
Account endpoints for the signed-in user.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from filmsync.api.dependencies import get_current_user_id, get_db
from filmsync.api.models.user import AccountDeletedResponse, UserResponse
from filmsync.database import crud

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("", response_model=UserResponse)
def get_or_create_user(
    user_id: str = Depends(get_current_user_id),
    x_user_email: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """Get the user record, creating it on first sign-in."""
    return crud.ensure_user(db, user_id, email=x_user_email, display_name=x_user_name)


@router.delete("", response_model=AccountDeletedResponse)
def delete_account(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Delete the user and every film status and preference they own."""
    deleted = crud.delete_user(db, user_id)
    return {"deleted": deleted}
