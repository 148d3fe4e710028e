"""
API tests for account endpoints.

Uses FastAPI TestClient against the app with an in-memory record store.
"""

from filmsync.database import crud

HEADERS = {"X-User-Id": "user_1"}


class TestUserEndpoints:
    """Tests for GET /api/user and DELETE /api/user."""

    def test_get_creates_user(self, api):
        """GET /api/user creates the user on first sign-in."""
        r = api.get(
            "/api/user",
            headers={**HEADERS, "X-User-Email": "ana@example.com", "X-User-Name": "Ana"},
        )
        assert r.status_code == 200
        data = r.json()
        assert data["id"] == "user_1"
        assert data["email"] == "ana@example.com"
        assert data["display_name"] == "Ana"
        assert "created_at" in data

    def test_get_is_idempotent(self, api):
        first = api.get("/api/user", headers=HEADERS).json()
        second = api.get("/api/user", headers=HEADERS).json()
        assert first == second

    def test_missing_identity(self, api):
        """Requests without a user id are refused with 401."""
        r = api.get("/api/user")
        assert r.status_code == 401
        assert r.json()["detail"] == "Not signed in"

    def test_blank_identity(self, api):
        r = api.get("/api/user", headers={"X-User-Id": "  "})
        assert r.status_code == 401

    def test_delete_account_cascades(self, api, session):
        """DELETE /api/user removes the user and everything they own."""
        api.put(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            json={
                "status": "seen",
                "added_at": "2024-01-01T00:00:00Z",
                "updated_at": "2024-01-01T00:00:00Z",
            },
        )
        api.put(
            "/api/user/preferences",
            headers=HEADERS,
            json={"updated_at": "2024-01-01T00:00:00Z"},
        )

        r = api.delete("/api/user", headers=HEADERS)

        assert r.status_code == 200
        assert r.json() == {"deleted": True}
        assert crud.get_user(session, "user_1") is None
        assert crud.count_user_rows(session, "user_1") == {"film_statuses": 0, "preferences": 0}

    def test_delete_unknown_account(self, api):
        r = api.delete("/api/user", headers={"X-User-Id": "ghost"})
        assert r.status_code == 200
        assert r.json() == {"deleted": False}


class TestSystemEndpoints:
    """Tests for / and /api/health."""

    def test_health(self, api):
        api.get("/api/user", headers=HEADERS)
        r = api.get("/api/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["users"] == 1
        assert data["film_statuses"] == 0

    def test_root(self, api):
        r = api.get("/")
        assert r.status_code == 200
        assert r.json()["health"] == "/api/health"
