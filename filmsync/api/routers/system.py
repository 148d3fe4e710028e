"""
System API endpoints (health).
"""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filmsync.api.dependencies import get_db
from filmsync.database.models import FilmStatus, User

router = APIRouter(prefix="/api", tags=["system"])


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check: database reachable."""
    try:
        user_count = db.scalar(select(func.count(User.id)))
        status_count = db.scalar(select(func.count(FilmStatus.id)))
    except SQLAlchemyError as e:
        return {"status": "unhealthy", "database": str(e)}
    return {
        "status": "healthy",
        "database": "connected",
        "users": user_count,
        "film_statuses": status_count,
    }
