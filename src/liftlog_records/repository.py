"""Record store and workout source interfaces, plus in-memory implementations.

Records are keyed by ``(user_id, exact exercise name)``. Writes are
conditional on ``ExerciseRecord.version``: 0 inserts, anything else updates
only if the stored row still carries that version.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import replace
from typing import Protocol

from .errors import VersionConflict
from .models import ExerciseRecord, Workout, exercise_key


class RecordRepository(Protocol):
    async def get(self, user_id: str, exercise_name: str) -> ExerciseRecord | None: ...

    async def list_all(self, user_id: str) -> list[ExerciseRecord]: ...

    async def upsert(self, record: ExerciseRecord) -> ExerciseRecord: ...

    async def delete(
        self,
        user_id: str,
        exercise_name: str,
        expected_version: int | None = None,
    ) -> bool: ...

    async def total_volume(self, user_id: str) -> float: ...


class WorkoutSource(Protocol):
    async def list_workouts(self, user_id: str) -> list[Workout]: ...


class InMemoryRecordRepository:
    """Dict-backed store. Hands out copies so callers never share state with it."""

    def __init__(self, records: Iterable[ExerciseRecord] = ()) -> None:
        self._records: dict[tuple[str, str], ExerciseRecord] = {}
        for record in records:
            stored = copy.deepcopy(record)
            stored.version = max(stored.version, 1)
            self._records[stored.key] = stored

    async def get(self, user_id: str, exercise_name: str) -> ExerciseRecord | None:
        stored = self._records.get((user_id, exercise_key(exercise_name)))
        return copy.deepcopy(stored) if stored is not None else None

    async def list_all(self, user_id: str) -> list[ExerciseRecord]:
        owned = [r for (uid, _), r in self._records.items() if uid == user_id]
        return [copy.deepcopy(r) for r in sorted(owned, key=lambda r: r.exercise_name)]

    async def upsert(self, record: ExerciseRecord) -> ExerciseRecord:
        current = self._records.get(record.key)
        current_version = current.version if current is not None else 0
        if current_version != record.version:
            raise VersionConflict(
                f"Record version mismatch for {record.exercise_name!r}",
                user_id=record.user_id,
                exercise_name=record.exercise_name,
                expected_version=record.version,
                actual_version=current_version,
            )
        stored = replace(copy.deepcopy(record), version=record.version + 1)
        self._records[record.key] = stored
        return copy.deepcopy(stored)

    async def delete(
        self,
        user_id: str,
        exercise_name: str,
        expected_version: int | None = None,
    ) -> bool:
        key = (user_id, exercise_key(exercise_name))
        current = self._records.get(key)
        if current is None:
            return False
        if expected_version is not None and current.version != expected_version:
            raise VersionConflict(
                f"Record version mismatch for {exercise_name!r}",
                user_id=user_id,
                exercise_name=exercise_name,
                expected_version=expected_version,
                actual_version=current.version,
            )
        del self._records[key]
        return True

    async def total_volume(self, user_id: str) -> float:
        return sum(r.total_volume_kg for (uid, _), r in self._records.items() if uid == user_id)


class InMemoryWorkoutSource:
    def __init__(self, workouts: Iterable[Workout] = ()) -> None:
        self._workouts: list[Workout] = list(workouts)

    def add(self, workout: Workout) -> None:
        """Add ``workout``, replacing any stored workout with the same id."""
        self.remove(workout.id)
        self._workouts.append(workout)

    def remove(self, workout_id: str) -> None:
        self._workouts = [w for w in self._workouts if w.id != workout_id]

    async def list_workouts(self, user_id: str) -> list[Workout]:
        owned = [w for w in self._workouts if w.user_id == user_id]
        return sorted(owned, key=lambda w: w.performed_on)
