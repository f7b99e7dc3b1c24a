"""Tests for record documents, including tolerant reads of old documents."""

import json
from datetime import date

import pytest

from liftlog_records.aggregation import group_workout_sets, merge_sets
from liftlog_records.catalog import DEFAULT_CATALOG
from liftlog_records.serializers import (
    daily_max_from_list,
    record_from_dict,
    record_to_dict,
    record_to_public_dict,
)

from factories import USER_ID, exercise, make_workout


def _pull_up_record():
    workout = make_workout(
        "w1", date(2024, 2, 1),
        exercise("Pull Up", (None, 10), (15, 5)),
        bodyweight_kg=75.0,
    )
    batch = group_workout_sets(workout, bodyweight_kg=75.0)[0]
    profile = DEFAULT_CATALOG.classify("Pull Up")
    return merge_sets(None, batch.contributions, profile, user_id=USER_ID)


def test_document_survives_json_round_trip():
    record = _pull_up_record()
    document = json.loads(json.dumps(record_to_dict(record)))
    restored = record_from_dict(USER_ID, "Pull Up", document, version=3)

    assert restored.version == 3
    record.version = 3
    assert restored == record


def test_document_layout():
    document = record_to_dict(_pull_up_record())
    assert document["max_weight_date"] == "2024-02-01"
    assert document["best_single_set"] == {
        "weight_kg": 75.0,
        "reps": 10,
        "volume_kg": 750.0,
        "date": "2024-02-01",
        "workout_id": "w1",
    }
    assert document["daily_max"] == [{"date": "2024-02-01", "max_weight_kg": 90.0, "max_reps": 5}]
    assert document["merged_workout_ids"] == ["w1"]


def test_daily_max_newest_first():
    record = _pull_up_record()
    record.daily_max = daily_max_from_list([
        {"date": "2024-01-01", "max_weight_kg": 80, "max_reps": 5},
        {"date": "2024-03-01", "max_weight_kg": 85, "max_reps": 3},
    ])
    dates = [entry["date"] for entry in record_to_dict(record)["daily_max"]]
    assert dates == ["2024-03-01", "2024-01-01"]


def test_missing_fields_default_to_empty():
    record = record_from_dict(USER_ID, "Deadlift", {"max_weight_kg": None, "total_volume_kg": "abc"})
    assert record.max_weight_kg == 0.0
    assert record.total_volume_kg == 0.0
    assert record.max_reps == 0
    assert record.category == "General"
    assert record.exercise_type == "strength"
    assert record.best_single_set is None
    assert record.daily_max == {}
    assert record.merged_workout_ids == set()
    assert record.version == 0


def test_none_document():
    record = record_from_dict(USER_ID, "Deadlift", None)
    assert record.exercise_name == "Deadlift"
    assert record.total_sets == 0


def test_legacy_flat_best_set_fields():
    record = record_from_dict(USER_ID, "Deadlift", {
        "best_single_set_weight_kg": 140,
        "best_single_set_reps": 5,
        "best_single_set_date": "2023-11-20T10:00:00Z",
        "best_single_set_workout_id": 17,
        "best_near_max_weight_kg": 150,
        "best_near_max_reps": 2,
        "best_near_max_date": "2023-11-21",
    })
    assert record.best_single_set.volume_kg == 700.0
    assert record.best_single_set.performed_on == date(2023, 11, 20)
    assert record.best_single_set.workout_id == "17"
    assert record.best_near_max.weight_kg == 150.0
    assert record.best_near_max.workout_id == ""


def test_malformed_daily_max_entries_skipped():
    daily = daily_max_from_list([
        {"date": "not-a-date", "max_weight_kg": 80, "max_reps": 5},
        "garbage",
        {"date": "2024-01-01", "max_weight_kg": 80, "max_reps": 5},
        {"date": "2024-01-01", "max_weight_kg": 75, "max_reps": 8},
    ])
    assert list(daily) == [date(2024, 1, 1)]
    assert daily[date(2024, 1, 1)].max_weight_kg == 80.0


def test_daily_max_as_mapping():
    daily = daily_max_from_list({"2024-01-01": {"max_weight_kg": 80, "max_reps": 5}})
    assert daily[date(2024, 1, 1)].max_reps == 5


def test_public_dict_includes_key_and_version():
    record = _pull_up_record()
    record.version = 2
    public = record_to_public_dict(record)
    assert public["user_id"] == USER_ID
    assert public["exercise_name"] == "Pull Up"
    assert public["version"] == 2


def test_legacy_near_max_survives_a_lighter_workout():
    record = record_from_dict(USER_ID, "Deadlift", {
        "canonical_id": "deadlift",
        "category": "Back",
        "max_1rm_kg": 214,
        "max_weight_kg": 200,
        "max_weight_reps": 3,
        "total_volume_kg": 600,
        "total_sets": 1,
        "has_external_load": True,
        "best_near_max_weight_kg": 200,
        "best_near_max_reps": 3,
        "best_near_max_date": "2024-01-01",
        "best_near_max_workout_id": "w0",
    })
    assert record.weighted_near_max == record.best_near_max

    workout = make_workout("w1", date(2024, 2, 1), exercise("Deadlift", (60, 5)))
    batch = group_workout_sets(workout, bodyweight_kg=80.0)[0]
    merged = merge_sets(record, batch.contributions, DEFAULT_CATALOG.classify("Deadlift"), user_id=USER_ID)

    assert merged.best_near_max.weight_kg == 200.0
    assert merged.best_near_max.reps == 3
    assert merged.best_near_max.workout_id == "w0"


def test_legacy_bodyweight_near_max_seeds_bodyweight_candidate():
    record = record_from_dict(USER_ID, "Pull Up", {
        "is_bodyweight": True,
        "max_reps": 12,
        "max_1rm_kg": 100,
        "best_near_max_weight_kg": 75,
        "best_near_max_reps": 12,
        "best_near_max_date": "2024-01-01",
    })
    assert record.bodyweight_near_max == record.best_near_max
    assert record.weighted_near_max is None


@pytest.mark.parametrize(
    "stored,expected",
    [
        ("false", False),
        ("False", False),
        ("0", False),
        ("", False),
        (None, False),
        (0, False),
        ("true", True),
        ("TRUE", True),
        (1, True),
        (True, True),
    ],
)
def test_boolean_fields_read_tolerantly(stored, expected):
    record = record_from_dict(USER_ID, "Pull Up", {"is_bodyweight": stored, "has_external_load": stored})
    assert record.is_bodyweight is expected
    assert record.has_external_load is expected
