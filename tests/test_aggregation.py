from datetime import datetime, timezone

from etl import aggregation
from etl.identity import MetadataIndex

NOW = 1_700_000_000_000


def _records():
    return [
        {"athlete_name": "A", "distance": 5000, "moving_time": 1500},
        {"athlete_name": "A", "distance": 3000, "moving_time": 900},
        {"athlete_name": "B", "distance": 10000, "moving_time": 3000},
    ]


def test_aggregate_two_athletes():
    out = aggregation.aggregate(_records(), now=NOW)

    a, b = out["a"], out["b"]
    assert (a["distance"], a["count"], a["longest"], a["avg_pace"]) == (8000, 2, 5000, 300)
    assert (b["distance"], b["count"], b["longest"], b["avg_pace"]) == (10000, 1, 10000, 300)
    assert a["total_moving_time"] == 2400
    assert a["name"] == "A"
    assert a["updated_at"] == NOW


def test_aggregate_is_recomputed_and_pure():
    records = _records()
    first = aggregation.aggregate(records, now=NOW)
    second = aggregation.aggregate(records, now=NOW)
    assert first == second
    assert records == _records()


def test_anonymous_records_dropped():
    out = aggregation.aggregate([{"distance": 5000, "moving_time": 1500}], now=NOW)
    assert out == {}


def test_zero_distance_has_no_pace():
    out = aggregation.aggregate([{"athlete_id": "7", "distance": 0, "moving_time": 60}], now=NOW)
    assert out["7"]["avg_pace"] is None


def test_field_fallbacks_used():
    out = aggregation.aggregate(
        [{"athlete_name": "C", "distance_m": "4000", "movingTime": 1200, "total_elevation_gain": 15}], now=NOW
    )
    assert out["c"]["distance"] == 4000.0
    assert out["c"]["elev_gain"] == 15
    assert out["c"]["avg_pace"] == 300


def test_roster_members_always_listed():
    members = [{"id": 100, "name": "Carl"}, {"name": "A"}]
    out = aggregation.aggregate(_records(), members=members, now=NOW)

    assert list(out) == ["100", "a", "b"]
    carl = out["100"]
    assert (carl["distance"], carl["count"], carl["longest"], carl["avg_pace"]) == (0, 0, 0, None)
    assert carl["name"] == "Carl"
    assert out["a"]["distance"] == 8000


def test_roster_member_matched_by_name_when_activities_lack_id():
    members = [{"id": 5, "firstname": "Jayko", "lastname": "C."}]
    records = [{"athlete": {"firstname": "Jayko", "lastname": "C."}, "distance": 4000, "moving_time": 1400}]
    out = aggregation.aggregate(records, members=members, now=NOW)
    assert list(out) == ["5"]
    assert out["5"]["distance"] == 4000


def test_since_filters_old_activities():
    since = datetime(2025, 11, 1, tzinfo=timezone.utc).timestamp()
    records = [
        {"athlete_name": "A", "distance": 5000, "start_date": "2025-10-01T06:00:00Z"},
        {"athlete_name": "A", "distance": 3000, "start_date": "2025-11-02T06:00:00Z"},
        {"athlete_name": "A", "distance": 1000},
    ]
    out = aggregation.aggregate(records, since=since, now=NOW)
    assert out["a"]["distance"] == 4000
    assert out["a"]["count"] == 2


def test_parse_start_date_uses_zone_aliases():
    expected = int(datetime(2025, 10, 31, 16, tzinfo=timezone.utc).timestamp())
    assert aggregation.parse_start_date("2025-11-01", "Asia/Manila") == expected
    assert aggregation.parse_start_date("2025-11-01", "PST") == expected
    assert aggregation.parse_start_date("2025-11-01T10:00:00", "PH") == expected


def test_parse_start_date_bad_input():
    utc = int(datetime(2025, 11, 1, tzinfo=timezone.utc).timestamp())
    assert aggregation.parse_start_date("2025-11-01", "Mars/Olympus") == utc
    assert aggregation.parse_start_date("yesterday") is None
    assert aggregation.parse_start_date(None) is None


def test_window_start(monkeypatch):
    monkeypatch.delenv("LB_AGGREGATION_START_DATE", raising=False)
    assert aggregation.window_start(now=1_000_000) == 1_000_000 - 7 * 86400
    assert aggregation.window_start("nope", now=1_000_000) == 1_000_000 - 7 * 86400
    assert aggregation.window_start("2025-11-01", tz="UTC") == int(datetime(2025, 11, 1, tzinfo=timezone.utc).timestamp())

    monkeypatch.setenv("LB_AGGREGATION_START_DATE", "2025-11-01")
    assert aggregation.window_start(tz="UTC") == int(datetime(2025, 11, 1, tzinfo=timezone.utc).timestamp())


def test_leaderboard_rows_apply_metadata():
    summaries = aggregation.aggregate(_records(), now=NOW)
    index = MetadataIndex([{"id": "name:A", "name": "A", "nickname": "Ace", "goal": 50}], fuzzy_threshold=0)
    rows = aggregation.leaderboard_rows(summaries, index)

    by_key = {row["athlete_key"]: row for row in rows}
    assert by_key["a"]["athlete_display"] == "Ace"
    assert by_key["a"]["goal"] == 50
    assert by_key["b"]["athlete_display"] == "B"
    assert by_key["b"]["nickname"] is None
    assert by_key["b"]["summary"] is summaries["b"]


def test_rank_rows_by_distance():
    rows = aggregation.leaderboard_rows(aggregation.aggregate(_records(), now=NOW))
    assert [row["athlete_key"] for row in aggregation.rank_rows(rows)] == ["b", "a"]
