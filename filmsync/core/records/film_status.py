"""
FilmStatus record shared by the record store, the HTTP API and the client.

One record exists per (user, film). The owning user is implied by the
context (the authenticated request or the client cache), so it is not part
of the payload.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import (
    BaseModel,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    constr,
    field_validator,
    model_validator,
)

from filmsync.core.records.timestamps import ensure_utc


class WatchStatus(str, Enum):
    """A user's relationship with a film."""

    WANT_TO_SEE = "want_to_see"
    SEEN = "seen"
    NOT_INTERESTED = "not_interested"


_HTTP_URL = TypeAdapter(HttpUrl)


class FilmSnapshot(BaseModel):
    """
    Denormalized film metadata captured at write time.

    Lets a status be displayed without joining the film catalog, at the cost
    of possibly being stale relative to it.
    """

    film_title: Optional[str] = Field(None, max_length=500)
    film_year: Optional[int] = Field(None, ge=1800, le=2100)
    film_directors: Optional[List[constr(max_length=200)]] = None
    film_poster_url: Optional[str] = Field(None, max_length=500)

    class Config:
        from_attributes = True

    @field_validator("film_poster_url")
    @classmethod
    def poster_url_is_http(cls, value: Optional[str]) -> Optional[str]:
        # Validated as a URL but stored exactly as sent
        if value is not None:
            try:
                _HTTP_URL.validate_python(value)
            except ValidationError:
                raise ValueError("film_poster_url must be an http(s) URL") from None
        return value


class FilmStatusFields(FilmSnapshot):
    """Everything in a film status except the film id."""

    status: WatchStatus
    added_at: datetime
    seen_at: Optional[datetime] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    notes: Optional[str] = Field(None, max_length=1000)
    updated_at: datetime

    @field_validator("added_at", "seen_at", "updated_at")
    @classmethod
    def _to_utc(cls, value):
        return ensure_utc(value)

    @model_validator(mode="after")
    def _seen_at_follows_status(self):
        # seen_at reflects the latest transition only
        if self.status is not WatchStatus.SEEN:
            self.seen_at = None
        elif self.seen_at is None:
            self.seen_at = self.updated_at
        return self


class FilmStatusRecord(FilmStatusFields):
    """A user's status for one film."""

    film_id: str = Field(..., min_length=1, max_length=255)

    def snapshot(self) -> FilmSnapshot:
        """Return the denormalized film metadata of this record."""
        return FilmSnapshot(
            film_title=self.film_title,
            film_year=self.film_year,
            film_directors=self.film_directors,
            film_poster_url=self.film_poster_url,
        )
