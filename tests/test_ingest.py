import json

import pytest
import requests

from ingest import cache, manual, strava


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


@pytest.fixture(autouse=True)
def no_cache(monkeypatch):
    monkeypatch.setattr(cache, "SKIP_CACHE", True)


def test_fetch_club_activities_tags_items(monkeypatch):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append((url, params, headers))
        return FakeResponse([
            {"id": 7, "name": "Morning Run", "distance": 5000, "athlete": {"firstname": "Jayko", "lastname": "C."}},
            {"name": "Evening Run", "distance": 3000},
        ])

    monkeypatch.setattr(strava.requests, "get", fake_get)
    items = strava.fetch_club_activities(club_id="123", token="t0k", after=1730390400)

    assert len(items) == 2
    assert items[0]["strava_id"] == "7"
    assert "id" not in items[0]
    assert all(item["source"] == "strava_api" for item in items)
    assert all(isinstance(item["fetched_at"], int) for item in items)

    url, params, headers = calls[0]
    assert url.endswith("/clubs/123/activities")
    assert params["after"] == 1730390400
    assert params["page"] == 1
    assert headers == {"Authorization": "Bearer t0k"}
    # short first page: no second request
    assert len(calls) == 1


def test_fetch_club_activities_paginates(monkeypatch):
    pages = {1: [{"id": i} for i in range(strava.PER_PAGE)], 2: [{"id": "last"}]}

    def fake_get(url, params=None, headers=None, timeout=None):
        return FakeResponse(pages.get(params["page"], []))

    monkeypatch.setattr(strava.requests, "get", fake_get)
    items = strava.fetch_club_activities(club_id="123", token="t0k")
    assert len(items) == strava.PER_PAGE + 1
    assert items[-1]["strava_id"] == "last"


def test_fetch_failure_returns_empty(monkeypatch):
    def fake_get(url, params=None, headers=None, timeout=None):
        return FakeResponse({"message": "Authorization Error"}, status_code=401)

    monkeypatch.setattr(strava.requests, "get", fake_get)
    assert strava.fetch_club_activities(club_id="123", token="bad") == []
    assert strava.fetch_club_members(club_id="123", token="bad") == []
    assert strava.fetch_athlete_activities(token="bad") == []


def test_fetch_without_credentials(monkeypatch):
    monkeypatch.delenv("STRAVA_CLUB_ID", raising=False)
    monkeypatch.delenv("STRAVA_ACCESS_TOKEN", raising=False)
    assert strava.fetch_club_activities() == []
    assert strava.fetch_club_members() == []
    assert strava.fetch_athlete_activities() == []


def test_tag_activity():
    out = strava.tag_activity({"id": 99, "distance": 1000}, fetched_at=5)
    assert out == {"strava_id": "99", "distance": 1000, "source": "strava_api", "fetched_at": 5}


def test_cache_roundtrip(monkeypatch, tmp_path):
    monkeypatch.setattr(cache, "SKIP_CACHE", False)
    monkeypatch.setattr(cache, "CATALOG_PATH", tmp_path / "cache.json")

    assert cache.get_cached("club_members:1") is None
    cache.set_cached("club_members:1", [{"firstname": "Jayko"}])
    assert cache.get_cached("club_members:1") == [{"firstname": "Jayko"}]


def test_cache_expires_and_invalidates(monkeypatch, tmp_path):
    monkeypatch.setattr(cache, "SKIP_CACHE", False)
    monkeypatch.setattr(cache, "CATALOG_PATH", tmp_path / "cache.json")
    cache.set_cached("a", [{"n": 1}])
    cache.set_cached("b", [{"n": 2}])

    cache.invalidate("a")
    assert cache.get_cached("a") is None
    assert cache.get_cached("b") == [{"n": 2}]

    later = cache.time.time() + cache.TTL_MINUTES * 60 + 1
    monkeypatch.setattr(cache.time, "time", lambda: later)
    assert cache.get_cached("b") is None

    cache.invalidate()
    assert json.loads((tmp_path / "cache.json").read_text(encoding="utf-8")) == {}


def test_cached_feed_skips_api(monkeypatch, tmp_path):
    monkeypatch.setattr(cache, "SKIP_CACHE", False)
    monkeypatch.setattr(cache, "CATALOG_PATH", tmp_path / "cache.json")
    cache.set_cached("club_members:123", [{"firstname": "Cached"}])

    def fake_get(*args, **kwargs):
        raise AssertionError("API should not be called")

    monkeypatch.setattr(strava.requests, "get", fake_get)
    assert strava.fetch_club_members(club_id="123", token="t0k") == [{"firstname": "Cached"}]


def test_read_manual_csv(tmp_path):
    path = tmp_path / "upload.csv"
    path.write_text(
        "athlete_id,Athlete_Name,distance,moving_time,start_date,elevation_gain,notes\n"
        "100,Alice A.,5000,1500,2025-11-01,,felt good\n"
        ",0Arsel V.,21097.5,7200,2025-11-02,120,\n",
        encoding="utf-8",
    )
    records = manual.read_csv(path)

    assert len(records) == 2
    first, second = records
    assert first["athlete_id"] == "100"
    assert first["athlete_name"] == "Alice A."
    assert first["distance"] == 5000
    assert "elevation_gain" not in first
    assert "notes" not in first
    assert first["source"] == "manual"
    assert "athlete_id" not in second
    assert second["distance"] == 21097.5
    assert second["elevation_gain"] == 120
    assert second["created_at"] == first["created_at"]


def test_load_export(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"raw_activities": [{"id": "a"}, "junk", {"id": "b"}]}), encoding="utf-8")
    assert [r["id"] for r in manual.load_export(path)] == ["a", "b"]

    path.write_text(json.dumps([{"id": "c"}]), encoding="utf-8")
    assert manual.load_export(path) == [{"id": "c"}]
