"""
Outbound queue entries.

The queue holds at most one entry per record key: a newer local edit to the
same record replaces the queued one instead of stacking behind it.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

PREFERENCES_KEY = "preferences"


class RecordKind(str, Enum):
    FILM = "film"
    PREFERENCES = "preferences"


class ChangeOp(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


def film_key(film_id: str) -> str:
    """Queue key of a film status."""
    return f"film:{film_id}"


@dataclass(frozen=True)
class QueueEntry:
    """
    A pending change awaiting delivery to the record store.

    Attributes:
        key: Record identity (``film:<id>`` or ``preferences``)
        kind: Record kind
        op: Upsert or delete
        updated_at: Timestamp of the change; identifies it within its key
        payload: JSON form of the record for upserts, None for deletes
        film_id: Film id for film entries
        attempts: Failed delivery attempts so far
        next_attempt_at: Earliest time of the next attempt (None = now)
    """

    key: str
    kind: RecordKind
    op: ChangeOp
    updated_at: datetime
    payload: Optional[Dict[str, Any]] = None
    film_id: Optional[str] = None
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None

    def same_change(self, other: Optional["QueueEntry"]) -> bool:
        """True if ``other`` is this very change (not a later one for the key)."""
        return (
            other is not None
            and other.key == self.key
            and other.op == self.op
            and other.updated_at == self.updated_at
        )

    def is_due(self, now: datetime) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def deferred(self, next_attempt_at: datetime) -> "QueueEntry":
        """Copy of this entry after one more failed attempt."""
        return replace(self, attempts=self.attempts + 1, next_attempt_at=next_attempt_at)
