"""
Pydantic schemas for User API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class UserResponse(BaseModel):
    """Response model for user."""

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AccountDeletedResponse(BaseModel):
    """Response model for account deletion."""

    deleted: bool
