"""
Change feed and full bidirectional sync.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filmsync.api.dependencies import get_current_user, get_db
from filmsync.api.models.sync import ChangesResponse, SyncRequest, SyncResponse
from filmsync.api.rate_limit import enforce_sync_rate_limit
from filmsync.core.records import utc_now
from filmsync.database import crud

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["sync"])


@router.get("/changes", response_model=ChangesResponse)
def get_changes(
    since: Optional[datetime] = None,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Records of the user changed after the ``since`` watermark (all if omitted)."""
    statuses, prefs = crud.get_changes_since(db, user_id, since)
    return {"film_statuses": statuses, "preferences": prefs, "server_time": utc_now()}


@router.post(
    "/sync",
    response_model=SyncResponse,
    dependencies=[Depends(enforce_sync_rate_limit)],
)
def full_sync(
    body: SyncRequest,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Full bidirectional sync.

    Applies every client record with the usual last-write-wins rule and
    returns the complete merged state of the user.
    """
    try:
        counts = crud.upsert_film_statuses(db, user_id, body.film_statuses)
        if body.preferences is not None:
            crud.upsert_preferences(db, user_id, body.preferences)
        statuses, prefs = crud.get_changes_since(db, user_id)
    except SQLAlchemyError:
        logger.exception("Full sync failed for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to sync")
    logger.info(
        "Full sync for %s: %d applied, %d stale, %d stored",
        user_id, counts["processed"], counts["skipped"], len(statuses)
    )
    return {
        "film_statuses": statuses,
        "preferences": prefs,
        "processed": counts["processed"],
        "skipped": counts["skipped"],
        "server_time": utc_now(),
    }
