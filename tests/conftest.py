"""
Shared fixtures: an in-memory record store, the API wired to it, and a
controllable clock.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from filmsync.api.dependencies import get_db
from filmsync.api.main import app
from filmsync.api.rate_limit import sync_rate_limiter
from filmsync.database.connection import create_db_engine
from filmsync.database.models import Base


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds=1.0):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine shared by every session of a test."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a new database session for testing."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def api(engine):
    """TestClient for the app, backed by the in-memory engine."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    sync_rate_limiter.reset()
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    sync_rate_limiter.reset()


@pytest.fixture
def make_clock():
    """Factory for independent clocks, e.g. one per simulated device."""
    return FakeClock
