"""
End-to-end sync tests.

Each simulated device has its own Local State Cache, clock and coordinator,
and talks to the real API app in-process through RecordStoreClient, so the
complete path cache -> coordinator -> HTTP -> record store is exercised:

1. Offline edit on device A reaches the store on reconnect
2. A device with a slow clock loses to the newer write and converges
3. Rapid local edits are sent once, latest only
4. Account deletion leaves no rows behind
5. Simultaneous preference edits tie and each device keeps its own value
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from filmsync.client.api_client import RecordStoreClient
from filmsync.client.config import SyncSettings
from filmsync.client.coordinator import SyncCoordinator, SyncState
from filmsync.client.local_store import LocalStateCache
from filmsync.client.persistence import MemoryPersistence
from filmsync.client.session_state import SyncSession
from filmsync.core.errors import TransportError
from filmsync.database import crud

BASE = datetime(2024, 5, 1, 18, 0, tzinfo=timezone.utc)


def at(seconds):
    return BASE + timedelta(seconds=seconds)


class Device:
    """One client: cache, clock, HTTP client and coordinator."""

    def __init__(self, api, make_clock, user_id="user_1", start=0):
        self.clock = make_clock(at(start))
        self.cache = LocalStateCache(user_id=user_id, clock=self.clock)
        self.client = RecordStoreClient(base_url="http://testserver", user_id=user_id, session=api)
        self.coordinator = SyncCoordinator(
            self.cache,
            self.client,
            SyncSettings(api_base_url="http://testserver", local_state_path=":memory:"),
            clock=self.clock,
            rng=random.Random(0),
        )

    def at(self, seconds):
        self.clock.now = at(seconds)
        return self


@pytest.fixture
def device(api, make_clock):
    return lambda **kwargs: Device(api, make_clock, **kwargs)


class OfflineSession:
    """requests-like session that fails every call, like a dropped connection."""

    def request(self, *args, **kwargs):
        raise TransportError("network unreachable")


class TestSyncScenarios:
    """Scenarios of the multi-device sync contract."""

    def test_offline_edit_pushed_on_reconnect(self, device, session):
        a = device()
        online = a.client.session
        a.client.session = OfflineSession()

        a.at(100).cache.set_status("F1", "want_to_see")
        report = a.coordinator.push_pending()
        assert report.failed == 1
        assert a.coordinator.status().state is SyncState.OFFLINE

        # Reconnect after the backoff delay
        a.client.session = online
        a.at(200)
        a.coordinator.sync_once()

        row = crud.get_film_status(session, "user_1", "F1")
        assert row.status == "want_to_see"
        assert row.updated_at == at(100)
        assert a.cache.pending() == []

    def test_slow_clock_loses_and_converges(self, device, session):
        a = device()
        a.at(100).cache.set_status("F1", "want_to_see")
        a.coordinator.sync_once()

        b = device()
        b.at(90).cache.set_status("F1", "seen")
        b.cache.set_rating("F1", 4)
        report = b.coordinator.push_pending()

        assert report.stale == 1
        row = crud.get_film_status(session, "user_1", "F1")
        assert row.status == "want_to_see"
        assert row.updated_at == at(100)

        b.coordinator.pull()
        local = b.cache.get_film("F1")
        assert local.status.value == "want_to_see"
        assert local.updated_at == at(100)
        assert local.rating is None

    def test_rapid_edits_send_latest_only(self, device, api, session):
        a = device()
        a.at(100).cache.set_status("F1", "seen")
        for second, rating in ((101, 2), (102, 3), (103, 5)):
            a.at(second).cache.set_rating("F1", rating)

        sent = []
        original = a.client.push_film_status

        def recording_push(record):
            sent.append(record.updated_at)
            return original(record)

        a.client.push_film_status = recording_push
        a.coordinator.sync_once()

        assert sent == [at(103)]
        assert crud.get_film_status(session, "user_1", "F1").rating == 5

    def test_account_deletion_cascades(self, device, session):
        a = device()
        a.at(10).cache.set_status("F1", "seen")
        a.cache.set_status("F2", "want_to_see")
        a.cache.update_filters(hide_seen=True)
        a.coordinator.sync_once()
        assert crud.count_user_rows(session, "user_1") == {"film_statuses": 2, "preferences": 1}

        assert a.client.delete_account() is True

        assert crud.count_user_rows(session, "user_1") == {"film_statuses": 0, "preferences": 0}
        assert crud.get_user(session, "user_1") is None

    def test_preference_tie_keeps_local(self, device):
        a = device()
        b = device()
        a.at(50).cache.update_preferences(default_date_range="today")
        b.at(50).cache.update_preferences(default_date_range="week")

        for _ in range(2):
            a.coordinator.sync_once()
            b.coordinator.sync_once()

        assert a.cache.preferences().preferences.default_date_range == "today"
        assert b.cache.preferences().preferences.default_date_range == "week"
        assert a.cache.pending() == [] and b.cache.pending() == []


class TestMultiDevice:
    """Convergence across devices beyond the basic scenarios."""

    def test_newer_edit_reaches_other_device(self, device):
        a = device()
        b = device()
        a.at(10).cache.set_status("F1", "want_to_see")
        a.coordinator.sync_once()
        b.at(20).coordinator.sync_once()
        assert b.cache.get_film("F1").status.value == "want_to_see"

        b.cache.set_status("F1", "seen")
        b.coordinator.sync_once()
        a.at(30).coordinator.sync_once()

        film = a.cache.get_film("F1")
        assert film.status.value == "seen"
        assert film.seen_at == at(20)

    def test_removal_propagates_by_full_sync(self, device):
        a = device()
        b = device()
        a.at(10).cache.set_status("F1", "seen")
        a.coordinator.sync_once()
        b.at(15).coordinator.sync_once()

        a.at(20).cache.remove_film("F1")
        a.coordinator.sync_once()
        b.at(25).coordinator.full_sync()

        assert a.cache.get_film("F1") is None
        assert b.cache.get_film("F1") is None

    def test_removal_loses_to_newer_edit(self, device, session):
        a = device()
        b = device()
        a.at(10).cache.set_status("F1", "seen")
        a.coordinator.sync_once()
        b.at(12).coordinator.sync_once()

        a.at(20).cache.remove_film("F1")
        b.at(30).cache.set_notes("F1", "keep this")
        b.coordinator.sync_once()
        a.coordinator.sync_once()

        assert crud.get_film_status(session, "user_1", "F1").notes == "keep this"
        assert a.cache.get_film("F1").notes == "keep this"

    def test_sign_in_uploads_anonymous_work(self, api, make_clock, session):
        clock = make_clock(at(5))
        settings = SyncSettings(api_base_url="http://testserver", local_state_path=":memory:")
        sync_session = SyncSession.open(settings=settings, persistence=MemoryPersistence(), clock=clock)
        sync_session.cache.set_status("F1", "want_to_see")
        assert sync_session.status() is None

        client = RecordStoreClient(base_url="http://testserver", user_id="user_1", session=api)
        sync_session.sign_in("user_1", client=client, start=False)
        sync_session.coordinator.full_sync()

        assert crud.get_film_status(session, "user_1", "F1") is not None
        sync_session.close(clear_local=True)
        assert sync_session.cache.films() == {}

    def test_sign_in_after_other_user_signed_out(self, api, make_clock, session):
        clock = make_clock(at(5))
        settings = SyncSettings(api_base_url="http://testserver", local_state_path=":memory:")
        persistence = MemoryPersistence()

        first = SyncSession.open(
            "user_x", settings=settings, persistence=persistence,
            client=RecordStoreClient(base_url="http://testserver", user_id="user_x", session=api),
            clock=clock,
        )
        first.cache.set_status("F1", "seen")
        first.coordinator.sync_once()
        first.close()

        second = SyncSession.open(settings=settings, persistence=persistence, clock=clock)
        second.sign_in(
            "user_y",
            client=RecordStoreClient(base_url="http://testserver", user_id="user_y", session=api),
            start=False,
        )
        second.coordinator.full_sync()

        assert second.cache.films() == {}
        assert crud.get_film_status(session, "user_y", "F1") is None
        assert crud.get_film_status(session, "user_x", "F1") is not None
        second.close()
