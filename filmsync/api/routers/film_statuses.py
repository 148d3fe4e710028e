"""
Film status endpoints.

Every write is conditional on ``updated_at``: a stale write is answered with
``outcome: stale`` and the stored record, never with an error status.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filmsync.api.dependencies import get_current_user, get_db
from filmsync.api.models.film_status import (
    BatchResult,
    DeleteResponse,
    FilmStatusBatch,
    FilmStatusMap,
    FilmStatusUpsertResponse,
)
from filmsync.core.records import FilmStatusFields, FilmStatusRecord
from filmsync.database import crud

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user/film-statuses", tags=["film-statuses"])


@router.get("", response_model=FilmStatusMap)
def list_film_statuses(
    since: Optional[datetime] = None,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the user's film statuses keyed by film id."""
    rows = crud.get_film_statuses(db, user_id, since=since)
    return {"statuses": {row.film_id: crud.to_film_status_record(row) for row in rows}}


@router.post("", response_model=BatchResult)
def upsert_film_statuses(
    batch: FilmStatusBatch,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Bulk conditional upsert used when a client flushes its state."""
    try:
        return crud.upsert_film_statuses(db, user_id, batch.statuses)
    except SQLAlchemyError:
        logger.exception("Film status batch failed for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to sync film statuses")


@router.put("/{film_id}", response_model=FilmStatusUpsertResponse)
def put_film_status(
    film_id: str,
    fields: FilmStatusFields,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Conditionally upsert one film status."""
    record = FilmStatusRecord(film_id=film_id, **fields.model_dump())
    outcome, stored = crud.put_film_status(db, user_id, record)
    return {"outcome": outcome, "record": stored}


@router.delete("/{film_id}", response_model=DeleteResponse)
def delete_film_status(
    film_id: str,
    updated_at: Optional[datetime] = None,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remove a film status, unless a newer write exists when updated_at is given."""
    outcome = crud.delete_film_status(db, user_id, film_id, updated_at=updated_at)
    return {"outcome": outcome}
