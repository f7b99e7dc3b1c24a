"""Tests for RecordsEngine: merge, recalculation, timeouts, conflicts and isolation."""

import asyncio
from dataclasses import replace
from datetime import date

import pytest

from liftlog_records.config import Config
from liftlog_records.engine import RecordsEngine
from liftlog_records.errors import (
    RecordStoreError,
    RecordStoreTimeout,
    VersionConflict,
    WorkoutSourceError,
)
from liftlog_records.metrics import get_metrics
from liftlog_records.models import ExerciseRecord
from liftlog_records.repository import InMemoryRecordRepository, InMemoryWorkoutSource

from factories import USER_ID, exercise, make_workout

DAY_1 = date(2024, 1, 1)
DAY_2 = date(2024, 1, 2)
DAY_3 = date(2024, 1, 3)


class SlowRecordRepository(InMemoryRecordRepository):
    """Upserts stall longer than any test timeout."""

    async def upsert(self, record):
        await asyncio.sleep(1)
        return await super().upsert(record)


class FlakyRecordRepository(InMemoryRecordRepository):
    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts_left = conflicts

    async def upsert(self, record):
        if self.conflicts_left > 0:
            self.conflicts_left -= 1
            raise VersionConflict(
                "simulated conflict",
                user_id=record.user_id,
                exercise_name=record.exercise_name,
                expected_version=record.version,
                actual_version=record.version + 1,
            )
        return await super().upsert(record)


class RacingRecordRepository(InMemoryRecordRepository):
    """Runs ``race`` once, right before the next upsert reaches the store."""

    def __init__(self):
        super().__init__()
        self.race = None

    async def upsert(self, record):
        race, self.race = self.race, None
        if race is not None:
            await race()
        return await super().upsert(record)


class BrokenRecordRepository(InMemoryRecordRepository):
    def __init__(self, broken_name: str):
        super().__init__()
        self.broken_name = broken_name

    async def upsert(self, record):
        if record.exercise_name == self.broken_name:
            raise RuntimeError("disk on fire")
        return await super().upsert(record)


def _engine(repo=None, source=None, **config):
    return RecordsEngine(repo or InMemoryRecordRepository(), source, config=Config(**config))


def _unversioned(records):
    return {r.exercise_name: replace(r, version=0) for r in records}


# ---------------------------------------------------------------------------
# merge_workout
# ---------------------------------------------------------------------------


class TestMergeWorkout:
    @pytest.mark.asyncio
    async def test_bench_press_three_by_five(self):
        engine = _engine()
        workout = make_workout("w1", DAY_1, exercise("Barbell Bench Press", (80, 5), (80, 5), (80, 5)))

        report = await engine.merge_workout(workout)

        assert report.ok
        outcome = report.outcome_for("Barbell Bench Press")
        assert outcome.status == "created"
        record = outcome.record
        assert record.total_volume_kg == 1200.0
        assert record.max_weight_kg == 80.0
        assert record.max_weight_reps == 5
        assert record.max_1rm_kg == 90.0
        assert record.version == 1

    @pytest.mark.asyncio
    async def test_bodyweight_pull_ups(self):
        engine = _engine()
        workout = make_workout("w1", DAY_1, exercise("Pull Up", (0, 10), (0, 8), (0, 6)))

        report = await engine.merge_workout(workout, athlete_bodyweight_kg=75.0)

        record = report.outcome_for("Pull Up").record
        assert record.total_volume_kg == 1800.0
        assert record.max_reps == 10
        assert record.max_weight_kg == 75.0
        assert record.best_near_max.reps == 10
        assert record.is_bodyweight

    @pytest.mark.asyncio
    async def test_unilateral_dumbbell_curl(self):
        engine = _engine()
        workout = make_workout("w1", DAY_1, exercise("Dumbbell Curl", (20, 8), unilateral=True))

        record = (await engine.merge_workout(workout)).outcome_for("Dumbbell Curl").record
        assert record.max_weight_kg == 40.0
        assert record.total_volume_kg == 320.0

    @pytest.mark.asyncio
    async def test_second_workout_updates_record(self):
        engine = _engine()
        await engine.merge_workout(make_workout("w1", DAY_1, exercise("Deadlift", (100, 5))))
        report = await engine.merge_workout(make_workout("w2", DAY_2, exercise("Deadlift", (120, 3))))

        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "updated"
        assert outcome.record.total_volume_kg == 860.0
        assert outcome.record.max_weight_kg == 120.0
        assert outcome.record.merged_workout_ids == {"w1", "w2"}
        assert outcome.record.version == 2

    @pytest.mark.asyncio
    async def test_merging_same_workout_twice_is_idempotent(self):
        repo = InMemoryRecordRepository()
        engine = _engine(repo)
        workout = make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)))

        await engine.merge_workout(workout)
        report = await engine.merge_workout(workout)

        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "unchanged"
        assert outcome.reason == "already_merged"
        assert (await repo.get(USER_ID, "Deadlift")).total_volume_kg == 500.0
        assert get_metrics()["merges"] == 1

    @pytest.mark.asyncio
    async def test_invalid_and_untracked_exercises_are_skipped(self):
        repo = InMemoryRecordRepository()
        engine = _engine(repo)
        workout = make_workout(
            "w1", DAY_1,
            exercise("Running", (None, 1)),
            exercise("Deadlift", (100, 0), (80, 0)),
        )

        report = await engine.merge_workout(workout)

        assert report.ok
        assert report.outcome_for("Running").reason == "untracked_type"
        assert report.outcome_for("Deadlift").reason == "no_valid_sets"
        assert await repo.list_all(USER_ID) == []
        assert get_metrics()["skipped_exercises"] == 2

    @pytest.mark.asyncio
    async def test_workout_bodyweight_used_when_caller_has_none(self):
        engine = _engine(default_bodyweight_kg=90.0)
        workout = make_workout("w1", DAY_1, exercise("Dips", (None, 10)), bodyweight_kg=70.0)

        record = (await engine.merge_workout(workout)).outcome_for("Dips").record
        assert record.total_volume_kg == 700.0

    @pytest.mark.asyncio
    async def test_configured_default_bodyweight(self):
        engine = _engine(default_bodyweight_kg=90.0)
        workout = make_workout("w1", DAY_1, exercise("Dips", (None, 10)))

        record = (await engine.merge_workout(workout)).outcome_for("Dips").record
        assert record.total_volume_kg == 900.0


# ---------------------------------------------------------------------------
# Failures: timeouts, conflicts and isolation
# ---------------------------------------------------------------------------


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_timeout_surfaces_typed_failure_without_partial_write(self):
        repo = SlowRecordRepository()
        engine = _engine(repo, store_timeout_seconds=0.05)

        report = await engine.merge_workout(make_workout("w1", DAY_1, exercise("Deadlift", (100, 5))))

        assert not report.ok
        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "failed"
        assert isinstance(outcome.error, RecordStoreTimeout)
        assert outcome.error.exercise_name == "Deadlift"
        assert await repo.total_volume(USER_ID) == 0
        assert get_metrics()["store_failures"] == 1

    @pytest.mark.asyncio
    async def test_retry_after_timeout_does_not_double_count(self):
        repo = SlowRecordRepository()
        workout = make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)))
        await _engine(repo, store_timeout_seconds=0.05).merge_workout(workout)

        report = await _engine(repo, store_timeout_seconds=5).merge_workout(workout)
        await _engine(repo, store_timeout_seconds=5).merge_workout(workout)

        assert report.outcome_for("Deadlift").status == "created"
        assert await repo.total_volume(USER_ID) == 500.0

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self):
        engine = _engine(FlakyRecordRepository(conflicts=2))

        report = await engine.merge_workout(make_workout("w1", DAY_1, exercise("Deadlift", (100, 5))))

        assert report.outcome_for("Deadlift").status == "created"
        assert get_metrics()["write_conflicts"] == 2

    @pytest.mark.asyncio
    async def test_conflict_fails_after_retries_exhausted(self):
        repo = FlakyRecordRepository(conflicts=10)
        engine = _engine(repo, max_write_retries=1)

        report = await engine.merge_workout(make_workout("w1", DAY_1, exercise("Deadlift", (100, 5))))

        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "failed"
        assert isinstance(outcome.error, VersionConflict)
        assert repo.conflicts_left == 8
        assert await repo.get(USER_ID, "Deadlift") is None

    @pytest.mark.asyncio
    async def test_zero_retries_makes_a_single_attempt(self):
        repo = FlakyRecordRepository(conflicts=10)
        engine = _engine(repo, max_write_retries=0)

        report = await engine.merge_workout(make_workout("w1", DAY_1, exercise("Deadlift", (100, 5))))

        assert isinstance(report.outcome_for("Deadlift").error, VersionConflict)
        assert repo.conflicts_left == 9
        assert get_metrics()["write_conflicts"] == 1

    @pytest.mark.asyncio
    async def test_rebuild_write_gives_up_after_retries(self):
        repo = FlakyRecordRepository(conflicts=10)
        source = InMemoryWorkoutSource([make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)))])
        engine = _engine(repo, source, max_write_retries=2)

        report = await engine.recalculate_all(USER_ID)

        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "failed"
        assert isinstance(outcome.error, VersionConflict)
        assert repo.conflicts_left == 7

    @pytest.mark.asyncio
    async def test_concurrent_merge_is_rebased_on_retry(self):
        repo = RacingRecordRepository()
        engine = _engine(repo)
        await engine.merge_workout(make_workout("w1", DAY_1, exercise("Deadlift", (100, 5))))

        racer = make_workout("w3", DAY_3, exercise("Deadlift", (120, 3)))
        repo.race = lambda: engine.merge_workout(racer)
        report = await engine.merge_workout(make_workout("w2", DAY_2, exercise("Deadlift", (110, 5))))

        assert report.outcome_for("Deadlift").status == "updated"
        stored = await repo.get(USER_ID, "Deadlift")
        assert stored.total_volume_kg == 500.0 + 360.0 + 550.0
        assert stored.merged_workout_ids == {"w1", "w2", "w3"}
        assert stored.version == 3
        assert get_metrics()["write_conflicts"] == 1

    @pytest.mark.asyncio
    async def test_one_failing_exercise_does_not_stop_the_others(self):
        repo = BrokenRecordRepository("Barbell Squat")
        engine = _engine(repo)
        workout = make_workout(
            "w1", DAY_1,
            exercise("Barbell Squat", (100, 5)),
            exercise("Deadlift", (140, 3)),
        )

        report = await engine.merge_workout(workout)

        failed = report.outcome_for("Barbell Squat")
        assert failed.status == "failed"
        assert isinstance(failed.error, RecordStoreError)
        assert isinstance(failed.error.__cause__, RuntimeError)
        assert report.outcome_for("Deadlift").status == "created"
        assert [r.exercise_name for r in await repo.list_all(USER_ID)] == ["Deadlift"]

    @pytest.mark.asyncio
    async def test_report_dict_counts_statuses(self):
        engine = _engine(BrokenRecordRepository("Barbell Squat"))
        workout = make_workout(
            "w1", DAY_1,
            exercise("Barbell Squat", (100, 5)),
            exercise("Deadlift", (140, 3)),
            exercise("Running", (None, 1)),
        )

        document = (await engine.merge_workout(workout)).to_dict()

        assert document["ok"] is False
        assert document["workout_id"] == "w1"
        assert document["counts"] == {"failed": 1, "created": 1, "skipped": 1}
        assert document["outcomes"][0]["error"]["type"] == "RecordStoreError"


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


class TestRecalculateAll:
    @pytest.mark.asyncio
    async def test_equals_incremental_merge(self):
        history = [
            make_workout("w1", DAY_1, exercise("Deadlift", (100, 5), (140, 1)), exercise("Pull Up", (None, 8))),
            make_workout("w2", DAY_2, exercise("Deadlift", (150, 3)), exercise("Pull Up", (10, 6), (None, 12))),
            make_workout("w3", DAY_3, exercise("Barbell Squat", (100, 5)), exercise("Running", (None, 1))),
        ]
        incremental_repo = InMemoryRecordRepository()
        incremental = _engine(incremental_repo)
        for workout in history:
            await incremental.merge_workout(workout)

        rebuilt_repo = InMemoryRecordRepository()
        report = await _engine(rebuilt_repo, InMemoryWorkoutSource(reversed(history))).recalculate_all(USER_ID)

        assert report.ok
        assert _unversioned(await rebuilt_repo.list_all(USER_ID)) == _unversioned(
            await incremental_repo.list_all(USER_ID)
        )

    @pytest.mark.asyncio
    async def test_replaces_drifted_and_deletes_stale_records(self):
        repo = InMemoryRecordRepository([
            ExerciseRecord(user_id=USER_ID, exercise_name="Deadlift", total_volume_kg=99999.0),
            ExerciseRecord(user_id=USER_ID, exercise_name="Leg Press", total_volume_kg=10.0),
            ExerciseRecord(user_id="someone-else", exercise_name="Leg Press", total_volume_kg=10.0),
        ])
        source = InMemoryWorkoutSource([make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)))])

        report = await _engine(repo, source).recalculate_all(USER_ID)

        assert [(o.exercise_name, o.status) for o in report.outcomes] == [
            ("Deadlift", "updated"),
            ("Leg Press", "deleted"),
        ]
        assert (await repo.get(USER_ID, "Deadlift")).total_volume_kg == 500.0
        assert await repo.get(USER_ID, "Leg Press") is None
        assert await repo.get("someone-else", "Leg Press") is not None

    @pytest.mark.asyncio
    async def test_second_run_leaves_records_unchanged(self):
        repo = InMemoryRecordRepository()
        source = InMemoryWorkoutSource([
            make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)), exercise("Dips", (None, 10))),
        ])
        engine = _engine(repo, source)

        await engine.recalculate_all(USER_ID)
        report = await engine.recalculate_all(USER_ID)

        assert {o.status for o in report.outcomes} == {"unchanged"}
        assert (await repo.get(USER_ID, "Deadlift")).version == 1

    @pytest.mark.asyncio
    async def test_bounded_concurrency_handles_many_exercises(self):
        names = ["Deadlift", "Barbell Squat", "Leg Press", "Hip Thrust", "Face Pull", "Barbell Row"]
        workout = make_workout("w1", DAY_1, *[exercise(name, (50, 5)) for name in names])
        repo = InMemoryRecordRepository()

        report = await _engine(repo, recalc_concurrency=2).recalculate_all(USER_ID, [workout])

        assert len(report.outcomes) == len(names)
        assert await repo.total_volume(USER_ID) == 250.0 * len(names)

    @pytest.mark.asyncio
    async def test_history_load_failure_raises(self):
        with pytest.raises(WorkoutSourceError):
            await _engine().recalculate_all(USER_ID)

    @pytest.mark.asyncio
    async def test_counts_recalculations(self):
        await _engine().recalculate_all(USER_ID, [])
        metrics = get_metrics()
        assert metrics["recalculations"] == 1
        assert metrics["operations"]["recalculate_all"]["successes"] == 1


class TestRecalculateOne:
    @pytest.mark.asyncio
    async def test_deleting_only_workout_removes_record(self):
        repo = InMemoryRecordRepository()
        workout = make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)), exercise("Dips", (None, 10)))
        source = InMemoryWorkoutSource([workout])
        engine = _engine(repo, source)
        await engine.merge_workout(workout)

        source.remove("w1")
        report = await engine.recalculate_one(USER_ID, "Deadlift")

        assert report.outcome_for("Deadlift").status == "deleted"
        assert await repo.get(USER_ID, "Deadlift") is None
        assert await repo.get(USER_ID, "Dips") is not None

    @pytest.mark.asyncio
    async def test_rebuilds_after_edit(self):
        repo = InMemoryRecordRepository()
        source = InMemoryWorkoutSource([make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)))])
        engine = _engine(repo, source)
        await engine.recalculate_all(USER_ID)

        source.add(make_workout("w1", DAY_1, exercise("Deadlift", (110, 5))))
        report = await engine.recalculate_one(USER_ID, "Deadlift")

        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "updated"
        assert outcome.record.total_volume_kg == 550.0
        assert outcome.record.version == 2

    @pytest.mark.asyncio
    async def test_untracked_exercise_skipped(self):
        history = [make_workout("w1", DAY_1, exercise("Running", (None, 1)))]
        report = await _engine().recalculate_one(USER_ID, "Running", history)
        assert report.outcome_for("Running").reason == "untracked_type"

    @pytest.mark.asyncio
    async def test_strength_record_survives_later_cardio_declaration(self):
        repo = InMemoryRecordRepository()
        source = InMemoryWorkoutSource([
            make_workout("w1", DAY_1, exercise("Tire Flip", (150, 5), exercise_type="strength")),
        ])
        engine = _engine(repo, source)
        await engine.recalculate_all(USER_ID)

        source.add(make_workout("w2", DAY_2, exercise("Tire Flip", (160, 5), exercise_type="cardio")))
        source.add(make_workout("w1", DAY_1, exercise("Tire Flip", (100, 5), exercise_type="strength")))
        report = await engine.recalculate_one(USER_ID, "Tire Flip")

        outcome = report.outcome_for("Tire Flip")
        assert outcome.status == "updated"
        assert (await repo.get(USER_ID, "Tire Flip")).total_volume_kg == 500.0

    @pytest.mark.asyncio
    async def test_nothing_stored_and_nothing_logged(self):
        report = await _engine().recalculate_one(USER_ID, "Deadlift", [])
        outcome = report.outcome_for("Deadlift")
        assert outcome.status == "skipped"
        assert outcome.reason == "no_valid_sets"

    @pytest.mark.asyncio
    async def test_timeout_reported_as_failed(self):
        history = [make_workout("w1", DAY_1, exercise("Deadlift", (100, 5)))]
        engine = _engine(SlowRecordRepository(), store_timeout_seconds=0.05)

        report = await engine.recalculate_one(USER_ID, "Deadlift", history)

        assert isinstance(report.outcome_for("Deadlift").error, RecordStoreTimeout)
        assert get_metrics()["operations"]["recalculate_one"]["failures"] == 1
