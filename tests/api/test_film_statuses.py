"""
API tests for film status endpoints.
"""

HEADERS = {"X-User-Id": "user_1"}


def status_body(status="want_to_see", updated_at="2024-01-01T12:00:00Z", **fields):
    body = {"status": status, "added_at": "2024-01-01T12:00:00Z", "updated_at": updated_at}
    body.update(fields)
    return body


class TestPutFilmStatus:
    """Tests for PUT /api/user/film-statuses/{film_id}."""

    def test_create(self, api):
        r = api.put(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            json=status_body(rating=4, film_title="Stalker", film_year=1979,
                             film_directors=["Andrei Tarkovsky"]),
        )
        assert r.status_code == 200
        data = r.json()
        assert data["outcome"] == "applied"
        assert data["record"]["film_id"] == "film-1"
        assert data["record"]["rating"] == 4
        assert data["record"]["film_directors"] == ["Andrei Tarkovsky"]
        assert data["record"]["seen_at"] is None

    def test_stale_write_returns_stored_record(self, api):
        """An older write is answered with outcome stale and the newer stored record."""
        api.put(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            json=status_body("seen", updated_at="2024-01-01T12:05:00Z"),
        )

        r = api.put(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            json=status_body("not_interested"),
        )

        assert r.status_code == 200
        data = r.json()
        assert data["outcome"] == "stale"
        assert data["record"]["status"] == "seen"
        assert data["record"]["seen_at"] is not None

    def test_same_write_twice(self, api):
        body = status_body(notes="twice")
        first = api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=body).json()
        second = api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=body).json()

        assert first["outcome"] == "applied"
        assert second["outcome"] == "stale"
        assert second["record"] == first["record"]

    def test_invalid_rating(self, api):
        r = api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=status_body(rating=6))
        assert r.status_code == 422

    def test_invalid_status(self, api):
        r = api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=status_body("loved"))
        assert r.status_code == 422

    def test_notes_too_long(self, api):
        r = api.put(
            "/api/user/film-statuses/film-1", headers=HEADERS, json=status_body(notes="x" * 1001)
        )
        assert r.status_code == 422

    def test_invalid_poster_url(self, api):
        r = api.put(
            "/api/user/film-statuses/film-1", headers=HEADERS,
            json=status_body(film_poster_url="javascript:alert(1)"),
        )
        assert r.status_code == 422

    def test_requires_identity(self, api):
        r = api.put("/api/user/film-statuses/film-1", json=status_body())
        assert r.status_code == 401


class TestListAndBatch:
    """Tests for GET and POST /api/user/film-statuses."""

    def test_list_keyed_by_film(self, api):
        api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=status_body())
        api.put("/api/user/film-statuses/film-2", headers=HEADERS, json=status_body("seen"))

        r = api.get("/api/user/film-statuses", headers=HEADERS)

        assert r.status_code == 200
        statuses = r.json()["statuses"]
        assert set(statuses) == {"film-1", "film-2"}
        assert statuses["film-2"]["status"] == "seen"

    def test_list_since(self, api):
        api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=status_body())
        api.put(
            "/api/user/film-statuses/film-2",
            headers=HEADERS,
            json=status_body(updated_at="2024-01-02T00:00:00Z"),
        )

        r = api.get(
            "/api/user/film-statuses",
            headers=HEADERS,
            params={"since": "2024-01-01T12:00:00+00:00"},
        )

        assert set(r.json()["statuses"]) == {"film-2"}

    def test_lists_are_per_user(self, api):
        api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=status_body())

        r = api.get("/api/user/film-statuses", headers={"X-User-Id": "user_2"})

        assert r.json()["statuses"] == {}

    def test_batch(self, api):
        api.put(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            json=status_body(updated_at="2024-02-01T00:00:00Z"),
        )

        r = api.post(
            "/api/user/film-statuses",
            headers=HEADERS,
            json={"statuses": [
                {"film_id": "film-1", **status_body()},
                {"film_id": "film-2", **status_body("seen")},
            ]},
        )

        assert r.status_code == 200
        assert r.json() == {"processed": 1, "skipped": 1}

    def test_batch_too_large(self, api):
        statuses = [{"film_id": f"film-{i}", **status_body()} for i in range(501)]
        r = api.post("/api/user/film-statuses", headers=HEADERS, json={"statuses": statuses})
        assert r.status_code == 422


class TestDeleteFilmStatus:
    """Tests for DELETE /api/user/film-statuses/{film_id}."""

    def test_delete(self, api):
        api.put("/api/user/film-statuses/film-1", headers=HEADERS, json=status_body())

        r = api.delete("/api/user/film-statuses/film-1", headers=HEADERS)

        assert r.json() == {"outcome": "deleted"}
        assert api.get("/api/user/film-statuses", headers=HEADERS).json()["statuses"] == {}

    def test_conditional_delete_loses_to_newer_write(self, api):
        api.put(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            json=status_body(updated_at="2024-01-01T12:10:00Z"),
        )

        r = api.delete(
            "/api/user/film-statuses/film-1",
            headers=HEADERS,
            params={"updated_at": "2024-01-01T12:05:00+00:00"},
        )

        assert r.json() == {"outcome": "stale"}

    def test_delete_missing(self, api):
        r = api.delete("/api/user/film-statuses/film-9", headers=HEADERS)
        assert r.json() == {"outcome": "missing"}
