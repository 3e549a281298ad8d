from etl import cleanup
from etl.store import ACTIVITIES, MemoryStore


def _rec(id, distance=5000, **extra):
    record = {
        "id": id,
        "athlete_name": "Jayko C.",
        "start_date": "2025-11-01T06:00:00Z",
        "distance": distance,
        "moving_time": 1500,
        "name": "Morning Run",
    }
    record.update(extra)
    return record


def test_group_key():
    record = _rec("a", distance=5000.4)
    assert cleanup.group_key(record, round_unit=1) == "jayko c|2025-11-01|5000"
    assert cleanup.group_key(record, round_unit=3.5) == "jayko c|2025-11-01|5001.5"
    assert cleanup.group_key(record, round_unit=1, date_only=False) == "jayko c|2025-11-01t06:00:00z|5000"


def test_group_key_uses_name_before_id():
    api_copy = _rec("a", athlete_id="100")
    manual_copy = _rec("b")
    assert cleanup.group_key(api_copy, 1) == cleanup.group_key(manual_copy, 1)


def test_provider_id_record_is_kept():
    records = [
        _rec("a", source="manual", updated_at=1),
        _rec("b", distance=5000.3, provider_activity_id="77", updated_at=9),
        _rec("c", distance=4999.8, source="strava_api", updated_at=2),
    ]
    plan = cleanup.cleanup(records, round_unit=1)
    assert len(plan) == 1
    group = plan[0]
    assert group.keep["id"] == "b"
    assert [r["id"] for r in group.delete] == ["a", "c"]
    assert len(group.records) == 3


def test_authoritative_source_kept_without_provider_id():
    records = [_rec("a", source="manual", updated_at=1), _rec("b", source="strava_api", updated_at=5)]
    assert cleanup.cleanup(records, round_unit=1)[0].keep["id"] == "b"


def test_earliest_timestamp_kept():
    records = [
        _rec("a", source="manual", updated_at=300),
        _rec("b", source="manual", fetched_at=100),
        _rec("c", source="manual"),
    ]
    assert cleanup.cleanup(records, round_unit=1)[0].keep["id"] == "b"


def test_first_record_kept_without_timestamps():
    records = [_rec("a", source="manual"), _rec("b", source="manual"), _rec("c", source="manual")]
    group = cleanup.cleanup(records, round_unit=1)[0]
    assert group.keep["id"] == "a"
    assert [r["id"] for r in group.delete] == ["b", "c"]


def test_singletons_produce_no_action():
    records = [
        _rec("a"),
        _rec("b", distance=8000),
        _rec("c", start_date="2025-11-02T06:00:00Z"),
        _rec("d", athlete_name="Arsel V."),
    ]
    assert cleanup.cleanup(records, round_unit=1) == []


def test_undated_runs_of_similar_length_stay_apart():
    morning = _rec("a", distance=5000.4, start_date=None)
    tempo = _rec("b", distance=4999.8, start_date=None, moving_time=1320, name="Evening Tempo")
    assert cleanup.group_key(morning, 1) == "jayko c||5000|1500|morning run"
    assert cleanup.cleanup([morning, tempo], round_unit=1) == []


def test_undated_identical_copies_still_grouped():
    records = [_rec("a", start_date=None), _rec("b", start_date=None, distance=5000.3)]
    plan = cleanup.cleanup(records, round_unit=1)
    assert len(plan) == 1
    assert [r["id"] for r in plan[0].delete] == ["b"]


def test_cleanup_is_advisory():
    records = [_rec("a"), _rec("b")]
    cleanup.cleanup(records, round_unit=1)
    assert [r["id"] for r in records] == ["a", "b"]


def test_exact_duplicates():
    records = [
        _rec("a", elevation_gain=12.04),
        _rec("b", elevation_gain=12.0),
        _rec("c", name="Evening Run"),
    ]
    plan = cleanup.cleanup_exact(records)
    assert len(plan) == 1
    assert plan[0].keep["id"] == "a"
    assert [r["id"] for r in plan[0].delete] == ["b"]


def test_apply_cleanup_deletes_planned_records():
    store = MemoryStore({ACTIVITIES: {r["id"]: r for r in (_rec("a"), _rec("b"), _rec("c", distance=8000))}})
    plan = cleanup.cleanup(store.scan(ACTIVITIES), round_unit=1)
    assert cleanup.apply_cleanup(store, plan) == 1
    assert sorted(doc["id"] for doc in store.scan(ACTIVITIES)) == ["a", "c"]


def test_round_to_unit():
    assert cleanup.round_to_unit(5000.5, 1) == 5001
    assert cleanup.round_to_unit(5002, 3.5) == 5001.5
    assert cleanup.round_to_unit("bad", 1) == 0
    assert cleanup.round_to_unit(12.3, 0) == 12.3
