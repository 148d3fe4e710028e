"""
API tests for preferences endpoints.
"""

HEADERS = {"X-User-Id": "user_1"}


class TestPreferencesEndpoints:
    """Tests for GET and PUT /api/user/preferences."""

    def test_get_before_first_write(self, api):
        r = api.get("/api/user/preferences", headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["preferences"] is None
        assert data["updated_at"] is None

    def test_put_and_get(self, api):
        body = {
            "preferences": {"selected_cinemas": ["bfi-southbank"], "default_view": "grid"},
            "persisted_filters": {"hide_seen": True, "decades": ["1970s"]},
            "updated_at": "2024-01-01T12:00:00Z",
        }

        r = api.put("/api/user/preferences", headers=HEADERS, json=body)

        assert r.status_code == 200
        assert r.json()["outcome"] == "applied"
        data = api.get("/api/user/preferences", headers=HEADERS).json()
        assert data["schema_version"] == 2
        assert data["preferences"]["selected_cinemas"] == ["bfi-southbank"]
        assert data["preferences"]["hide_past_screenings"] is True
        assert data["persisted_filters"]["decades"] == ["1970s"]

    def test_stale_put(self, api):
        api.put(
            "/api/user/preferences",
            headers=HEADERS,
            json={"preferences": {"default_view": "grid"}, "updated_at": "2024-01-02T00:00:00Z"},
        )

        r = api.put(
            "/api/user/preferences",
            headers=HEADERS,
            json={"preferences": {"default_view": "list"}, "updated_at": "2024-01-01T00:00:00Z"},
        )

        data = r.json()
        assert data["outcome"] == "stale"
        assert data["record"]["preferences"]["default_view"] == "grid"

    def test_unknown_schema_version(self, api):
        r = api.put(
            "/api/user/preferences",
            headers=HEADERS,
            json={"schema_version": 3, "updated_at": "2024-01-01T00:00:00Z"},
        )
        assert r.status_code == 422

    def test_invalid_view(self, api):
        r = api.put(
            "/api/user/preferences",
            headers=HEADERS,
            json={"preferences": {"default_view": "carousel"}, "updated_at": "2024-01-01T00:00:00Z"},
        )
        assert r.status_code == 422
