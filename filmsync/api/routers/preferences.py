"""
Preferences endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from filmsync.api.dependencies import get_current_user, get_db
from filmsync.api.models.preferences import PreferencesResponse, PreferencesUpsertResponse
from filmsync.core.records import PreferencesRecord
from filmsync.database import crud

router = APIRouter(prefix="/api/user/preferences", tags=["preferences"])


@router.get("", response_model=PreferencesResponse)
def get_preferences(
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the user's preferences (nulls until the first write)."""
    row = crud.get_preferences(db, user_id)
    if row is None:
        return PreferencesResponse()
    return crud.to_preferences_record(row).model_dump()


@router.put("", response_model=PreferencesUpsertResponse)
def put_preferences(
    record: PreferencesRecord,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Conditionally upsert the user's preferences."""
    outcome, stored = crud.put_preferences(db, user_id, record)
    return {"outcome": outcome, "record": stored}
