"""Records engine: the I/O boundary around the pure aggregation code.

Every store call runs under ``asyncio.timeout``; a stalled call surfaces as
``RecordStoreTimeout``. Writes are conditional on the record version and are
retried after re-reading on ``VersionConflict``. Failures are isolated per
exercise: one exercise failing never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Literal, TypeVar

from .aggregation import (
    ExerciseBatch,
    group_workout_sets,
    is_already_merged,
    merge_workout_exercise,
    resolve_bodyweight,
)
from .catalog import DEFAULT_CATALOG, ExerciseCatalog, ExerciseProfile
from .config import Config
from .errors import RecordStoreError, RecordStoreTimeout, VersionConflict, WorkoutSourceError
from .metrics import (
    record_merge,
    record_operation,
    record_recalculation,
    record_skipped_exercise,
    record_store_failure,
    record_write_conflict,
)
from .models import ExerciseRecord, Workout, exercise_key
from .recalculation import rebuild_record, rebuild_records
from .repository import RecordRepository, WorkoutSource
from .serializers import record_to_public_dict

logger = logging.getLogger(__name__)

T = TypeVar("T")

OutcomeStatus = Literal["created", "updated", "unchanged", "deleted", "skipped", "failed"]


@dataclass
class ExerciseOutcome:
    exercise_name: str
    status: OutcomeStatus
    record: ExerciseRecord | None = None
    error: RecordStoreError | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"exercise_name": self.exercise_name, "status": self.status}
        if self.reason:
            result["reason"] = self.reason
        if self.error is not None:
            result["error"] = {"type": type(self.error).__name__, "message": str(self.error)}
        if self.record is not None:
            result["record"] = record_to_public_dict(self.record)
        return result


@dataclass
class OperationReport:
    operation: str
    user_id: str
    outcomes: list[ExerciseOutcome] = field(default_factory=list)
    workout_id: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed(self) -> list[ExerciseOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    @property
    def records(self) -> list[ExerciseRecord]:
        return [o.record for o in self.outcomes if o.record is not None]

    def outcome_for(self, exercise_name: str) -> ExerciseOutcome | None:
        name = exercise_key(exercise_name)
        for outcome in self.outcomes:
            if outcome.exercise_name == name:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for outcome in self.outcomes:
            counts[outcome.status] = counts.get(outcome.status, 0) + 1
        result: dict[str, Any] = {
            "operation": self.operation,
            "user_id": self.user_id,
            "ok": self.ok,
            "counts": counts,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
        if self.workout_id is not None:
            result["workout_id"] = self.workout_id
        return result

    @classmethod
    def combine(cls, operation: str, user_id: str, reports: Iterable[OperationReport]) -> OperationReport:
        combined = cls(operation=operation, user_id=user_id)
        for report in reports:
            combined.outcomes.extend(report.outcomes)
        return combined


class RecordsEngine:
    def __init__(
        self,
        records: RecordRepository,
        workouts: WorkoutSource | None = None,
        *,
        catalog: ExerciseCatalog = DEFAULT_CATALOG,
        config: Config | None = None,
    ) -> None:
        self._records = records
        self._workouts = workouts
        self._catalog = catalog
        self._config = config or Config()

    @property
    def catalog(self) -> ExerciseCatalog:
        return self._catalog

    @property
    def config(self) -> Config:
        return self._config

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    async def _store(
        self,
        call: Awaitable[T],
        *,
        action: str,
        user_id: str,
        exercise_name: str | None = None,
    ) -> T:
        timeout = self._config.store_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                return await call
        except TimeoutError as exc:
            raise RecordStoreTimeout(
                f"{action} timed out after {timeout:.1f}s",
                user_id=user_id,
                exercise_name=exercise_name,
            ) from exc

    async def load_workouts(self, user_id: str) -> list[Workout]:
        if self._workouts is None:
            raise WorkoutSourceError("No workout source configured", user_id=user_id)
        try:
            return await self._store(
                self._workouts.list_workouts(user_id), action="list_workouts", user_id=user_id
            )
        except WorkoutSourceError:
            raise
        except RecordStoreError as exc:
            raise WorkoutSourceError(str(exc), user_id=user_id) from exc

    async def get_records(self, user_id: str) -> list[ExerciseRecord]:
        return await self._store(self._records.list_all(user_id), action="list_all", user_id=user_id)

    async def total_volume(self, user_id: str) -> float:
        return await self._store(
            self._records.total_volume(user_id), action="total_volume", user_id=user_id
        )

    # ------------------------------------------------------------------
    # Incremental merge
    # ------------------------------------------------------------------

    async def merge_workout(
        self,
        workout: Workout,
        athlete_bodyweight_kg: float | None = None,
    ) -> OperationReport:
        """Merge one workout into the stored records of its owner."""
        started = time.monotonic()
        user_id = workout.user_id
        bodyweight = resolve_bodyweight(
            workout, athlete_bodyweight_kg, self._config.default_bodyweight_kg
        )
        report = OperationReport(operation="merge_workout", user_id=user_id, workout_id=workout.id)

        for batch in group_workout_sets(workout, bodyweight_kg=bodyweight):
            profile = self._classify_batch(batch)
            if not profile.is_tracked:
                report.outcomes.append(self._skipped(batch.exercise_name, "untracked_type"))
                continue
            if not batch.has_valid_sets:
                report.outcomes.append(self._skipped(batch.exercise_name, "no_valid_sets"))
                continue
            report.outcomes.append(await self._guarded(
                self._merge_batch(user_id, batch, profile),
                user_id=user_id,
                exercise_name=batch.exercise_name,
            ))

        self._finish("merge_workout", report, started)
        return report

    def _classify_batch(self, batch: ExerciseBatch) -> ExerciseProfile:
        return self._catalog.classify(
            batch.exercise_name,
            declared_type=batch.declared_type,
            declared_category=batch.declared_category,
        )

    async def _merge_batch(
        self,
        user_id: str,
        batch: ExerciseBatch,
        profile: ExerciseProfile,
    ) -> ExerciseOutcome:
        name = batch.exercise_name
        attempt = 0
        while True:
            existing = await self._store(
                self._records.get(user_id, name), action="get", user_id=user_id, exercise_name=name
            )
            if is_already_merged(existing, batch.workout_id):
                return ExerciseOutcome(name, "unchanged", record=existing, reason="already_merged")

            merged = merge_workout_exercise(existing, batch, profile, user_id=user_id)
            if merged is None:
                return self._skipped(name, "no_valid_sets")

            try:
                stored = await self._store(
                    self._records.upsert(merged), action="upsert", user_id=user_id, exercise_name=name
                )
            except VersionConflict as exc:
                self._note_conflict(exc)
                attempt += 1
                if attempt > self._config.max_write_retries:
                    raise
                continue

            record_merge()
            logger.info(
                "Merged workout %s into %r (volume=%.1f, max_1rm=%.1f)",
                batch.workout_id, name, stored.total_volume_kg, stored.max_1rm_kg,
                extra={
                    "records_user_id": user_id,
                    "records_exercise_name": name,
                    "records_workout_id": batch.workout_id,
                },
            )
            return ExerciseOutcome(name, "created" if existing is None else "updated", record=stored)

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    async def recalculate_all(
        self,
        user_id: str,
        workouts: Sequence[Workout] | None = None,
    ) -> OperationReport:
        """Rebuild every record of ``user_id`` from the complete workout history.

        The end state equals deleting all records and reinserting one per
        exercise with valid sets; unchanged records are not rewritten.
        """
        started = time.monotonic()
        history = list(workouts) if workouts is not None else await self.load_workouts(user_id)
        result = rebuild_records(
            history,
            self._catalog,
            user_id=user_id,
            default_bodyweight_kg=self._config.default_bodyweight_kg,
        )
        current = {r.exercise_name: r for r in await self.get_records(user_id)}
        for name, reason in result.skipped.items():
            if name not in current:
                record_skipped_exercise()
                logger.debug("Skipping %r during rebuild: %s", name, reason)

        outcomes: dict[str, ExerciseOutcome] = {}
        semaphore = asyncio.Semaphore(self._config.recalc_concurrency)

        async def replace_one(name: str, record: ExerciseRecord) -> None:
            async with semaphore:
                outcomes[name] = await self._guarded(
                    self._replace_record(record, current.get(name)),
                    user_id=user_id,
                    exercise_name=name,
                )

        async def delete_one(name: str) -> None:
            async with semaphore:
                outcomes[name] = await self._guarded(
                    self._delete_record(user_id, name, current[name]),
                    user_id=user_id,
                    exercise_name=name,
                )

        async with asyncio.TaskGroup() as tg:
            for name, record in result.records.items():
                tg.create_task(replace_one(name, record))
            for name in current.keys() - result.records.keys():
                tg.create_task(delete_one(name))

        report = OperationReport(
            operation="recalculate_all",
            user_id=user_id,
            outcomes=[outcomes[name] for name in sorted(outcomes)],
        )
        record_recalculation()
        self._finish("recalculate_all", report, started)
        return report

    async def recalculate_one(
        self,
        user_id: str,
        exercise_name: str,
        workouts: Sequence[Workout] | None = None,
    ) -> OperationReport:
        """Rebuild the record of one exact exercise name, deleting it if nothing remains."""
        started = time.monotonic()
        name = exercise_key(exercise_name)
        history = list(workouts) if workouts is not None else await self.load_workouts(user_id)
        record, profile = rebuild_record(
            history,
            self._catalog,
            user_id=user_id,
            exercise_name=name,
            default_bodyweight_kg=self._config.default_bodyweight_kg,
        )
        report = OperationReport(operation="recalculate_one", user_id=user_id)

        if not profile.is_tracked:
            report.outcomes.append(self._skipped(name, "untracked_type"))
        else:
            report.outcomes.append(await self._guarded(
                self._reconcile_one(user_id, name, record),
                user_id=user_id,
                exercise_name=name,
            ))

        record_recalculation()
        self._finish("recalculate_one", report, started)
        return report

    async def _reconcile_one(
        self,
        user_id: str,
        name: str,
        record: ExerciseRecord | None,
    ) -> ExerciseOutcome:
        current = await self._store(
            self._records.get(user_id, name), action="get", user_id=user_id, exercise_name=name
        )
        if record is not None:
            return await self._replace_record(record, current)
        if current is None:
            return self._skipped(name, "no_valid_sets")
        return await self._delete_record(user_id, name, current)

    async def _replace_record(
        self,
        record: ExerciseRecord,
        current: ExerciseRecord | None,
    ) -> ExerciseOutcome:
        user_id, name = record.user_id, record.exercise_name
        attempt = 0
        while True:
            candidate = replace(record, version=current.version if current is not None else 0)
            if current is not None and candidate == current:
                return ExerciseOutcome(name, "unchanged", record=current)
            try:
                stored = await self._store(
                    self._records.upsert(candidate), action="upsert", user_id=user_id, exercise_name=name
                )
            except VersionConflict as exc:
                self._note_conflict(exc)
                attempt += 1
                if attempt > self._config.max_write_retries:
                    raise
                current = await self._store(
                    self._records.get(user_id, name), action="get", user_id=user_id, exercise_name=name
                )
                continue
            return ExerciseOutcome(name, "created" if current is None else "updated", record=stored)

    async def _delete_record(
        self,
        user_id: str,
        name: str,
        current: ExerciseRecord,
    ) -> ExerciseOutcome:
        expected: ExerciseRecord | None = current
        attempt = 0
        while True:
            if expected is None:
                return ExerciseOutcome(name, "deleted")
            try:
                await self._store(
                    self._records.delete(user_id, name, expected.version),
                    action="delete",
                    user_id=user_id,
                    exercise_name=name,
                )
            except VersionConflict as exc:
                self._note_conflict(exc)
                attempt += 1
                if attempt > self._config.max_write_retries:
                    raise
                expected = await self._store(
                    self._records.get(user_id, name), action="get", user_id=user_id, exercise_name=name
                )
                continue
            logger.info(
                "Deleted record %r: no valid sets remain", name,
                extra={"records_user_id": user_id, "records_exercise_name": name},
            )
            return ExerciseOutcome(name, "deleted")

    # ------------------------------------------------------------------
    # Outcome helpers
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        call: Awaitable[ExerciseOutcome],
        *,
        user_id: str,
        exercise_name: str,
    ) -> ExerciseOutcome:
        """Run one exercise's work, turning any failure into a failed outcome."""
        try:
            return await call
        except RecordStoreError as exc:
            record_store_failure()
            logger.warning(
                "Records update failed for %r: %s", exercise_name, exc,
                extra={"records_user_id": user_id, "records_exercise_name": exercise_name},
            )
            return ExerciseOutcome(exercise_name, "failed", error=exc)
        except Exception as exc:
            record_store_failure()
            logger.exception(
                "Unexpected error updating records for %r", exercise_name,
                extra={"records_user_id": user_id, "records_exercise_name": exercise_name},
            )
            error = RecordStoreError(str(exc), user_id=user_id, exercise_name=exercise_name)
            error.__cause__ = exc
            return ExerciseOutcome(exercise_name, "failed", error=error)

    @staticmethod
    def _skipped(exercise_name: str, reason: str) -> ExerciseOutcome:
        record_skipped_exercise()
        logger.debug("Skipping %r: %s", exercise_name, reason)
        return ExerciseOutcome(exercise_name, "skipped", reason=reason)

    @staticmethod
    def _note_conflict(exc: VersionConflict) -> None:
        record_write_conflict()
        logger.warning(
            "Write conflict on %r (expected version %s, found %s)",
            exc.exercise_name, exc.expected_version, exc.actual_version,
            extra={"records_user_id": exc.user_id, "records_exercise_name": exc.exercise_name},
        )

    @staticmethod
    def _finish(operation: str, report: OperationReport, started: float) -> None:
        duration_ms = (time.monotonic() - started) * 1000
        record_operation(operation, duration_ms, report.ok)
        logger.info(
            "%s finished for user=%s: %d outcomes, %d failed (%.1fms)",
            operation, report.user_id, len(report.outcomes), len(report.failed), duration_ms,
            extra={
                "records_user_id": report.user_id,
                "records_operation": operation,
                "records_duration_ms": round(duration_ms, 2),
            },
        )
