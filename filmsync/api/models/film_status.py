"""
Pydantic schemas for the film status API.
"""

from typing import Dict, List

from pydantic import BaseModel, Field

from filmsync.api.config import get_max_batch_size
from filmsync.core.records import FilmStatusRecord
from filmsync.database.crud import DeleteOutcome, UpsertOutcome


class FilmStatusBatch(BaseModel):
    """Request body for a bulk upsert."""

    statuses: List[FilmStatusRecord] = Field(..., max_length=get_max_batch_size())


class FilmStatusMap(BaseModel):
    """Film statuses of a user keyed by film id."""

    statuses: Dict[str, FilmStatusRecord]


class FilmStatusUpsertResponse(BaseModel):
    """Outcome of a single conditional upsert and the record now stored."""

    outcome: UpsertOutcome
    record: FilmStatusRecord


class BatchResult(BaseModel):
    """Counts of a bulk upsert."""

    processed: int
    skipped: int


class DeleteResponse(BaseModel):
    """Outcome of a conditional delete."""

    outcome: DeleteOutcome
