"""
API tests for the change feed and full sync endpoints.
"""

from filmsync.api.rate_limit import RateLimiter, sync_rate_limiter

HEADERS = {"X-User-Id": "user_1"}


def record(film_id, status="want_to_see", updated_at="2024-01-01T12:00:00Z", **fields):
    return {
        "film_id": film_id,
        "status": status,
        "added_at": "2024-01-01T12:00:00Z",
        "updated_at": updated_at,
        **fields,
    }


class TestChangesEndpoint:
    """Tests for GET /api/user/changes."""

    def test_all_changes(self, api):
        api.post("/api/user/film-statuses", headers=HEADERS, json={"statuses": [record("film-1")]})

        r = api.get("/api/user/changes", headers=HEADERS)

        assert r.status_code == 200
        data = r.json()
        assert [s["film_id"] for s in data["film_statuses"]] == ["film-1"]
        assert data["preferences"] is None
        assert "server_time" in data

    def test_changes_since_watermark(self, api):
        api.post(
            "/api/user/film-statuses",
            headers=HEADERS,
            json={"statuses": [
                record("film-1"),
                record("film-2", updated_at="2024-01-01T13:00:00Z"),
            ]},
        )

        r = api.get(
            "/api/user/changes",
            headers=HEADERS,
            params={"since": "2024-01-01T12:00:00+00:00"},
        )

        assert [s["film_id"] for s in r.json()["film_statuses"]] == ["film-2"]

    def test_requires_identity(self, api):
        assert api.get("/api/user/changes").status_code == 401


class TestFullSyncEndpoint:
    """Tests for POST /api/user/sync."""

    def test_merges_both_ways(self, api):
        """Client records are applied and the whole merged state comes back."""
        api.post(
            "/api/user/film-statuses",
            headers=HEADERS,
            json={"statuses": [
                record("film-1", "seen", updated_at="2024-01-02T00:00:00Z"),
                record("film-2"),
            ]},
        )

        r = api.post(
            "/api/user/sync",
            headers=HEADERS,
            json={
                "film_statuses": [
                    record("film-1", "not_interested"),  # older than stored
                    record("film-3", rating=5),
                ],
                "preferences": {"updated_at": "2024-01-01T00:00:00Z"},
            },
        )

        assert r.status_code == 200
        data = r.json()
        assert data["processed"] == 1
        assert data["skipped"] == 1
        statuses = {s["film_id"]: s for s in data["film_statuses"]}
        assert set(statuses) == {"film-1", "film-2", "film-3"}
        assert statuses["film-1"]["status"] == "seen"
        assert data["preferences"]["schema_version"] == 2

    def test_empty_body(self, api):
        r = api.post("/api/user/sync", headers=HEADERS, json={})
        assert r.status_code == 200
        assert r.json()["film_statuses"] == []

    def test_rate_limited(self, api, monkeypatch):
        """Rapid-fire full syncs from one client get 429 with Retry-After."""
        monkeypatch.setattr(sync_rate_limiter, "limit", 2)

        codes = [api.post("/api/user/sync", headers=HEADERS, json={}).status_code for _ in range(3)]

        assert codes == [200, 200, 429]
        r = api.post("/api/user/sync", headers=HEADERS, json={})
        assert "Retry-After" in r.headers


class TestRateLimiter:
    """Unit tests for the fixed-window limiter."""

    def test_window_resets(self):
        now = [0.0]
        limiter = RateLimiter(limit=1, window_seconds=60, clock=lambda: now[0])

        assert limiter.check("a").allowed
        assert not limiter.check("a").allowed
        assert limiter.check("b").allowed

        now[0] = 61.0
        assert limiter.check("a").allowed

    def test_reset_in(self):
        limiter = RateLimiter(limit=1, window_seconds=60, clock=lambda: 10.0)
        limiter.check("a")
        result = limiter.check("a")
        assert result.reset_in == 60
        assert result.remaining == 0
