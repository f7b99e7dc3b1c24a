"""Full and single-exercise recalculation.

Both rebuild records from scratch by folding the user's complete workout
history, in ascending date order, through the same reducer the incremental
merge uses. Workouts that share a date keep their source order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .aggregation import (
    DEFAULT_BODYWEIGHT_KG,
    ExerciseBatch,
    fold_sets,
    group_workout_sets,
    is_already_merged,
    new_record,
    resolve_bodyweight,
)
from .catalog import ExerciseCatalog, ExerciseProfile
from .models import ExerciseRecord, Workout, exercise_key

logger = logging.getLogger(__name__)


@dataclass
class RebuildResult:
    records: dict[str, ExerciseRecord] = field(default_factory=dict)
    # Exact names seen in history that produce no record (untracked type or
    # no valid sets).
    skipped: dict[str, str] = field(default_factory=dict)
    profiles: dict[str, ExerciseProfile] = field(default_factory=dict)


def ordered_user_workouts(workouts: Iterable[Workout], user_id: str) -> list[Workout]:
    """The user's workouts sorted by date. ``sorted`` is stable for same-day workouts."""
    owned = []
    for workout in workouts:
        if workout.user_id != user_id:
            logger.warning(
                "Ignoring workout %s owned by another user", workout.id,
                extra={"records_user_id": user_id, "records_workout_id": workout.id},
            )
            continue
        owned.append(workout)
    return sorted(owned, key=lambda w: w.performed_on)


def collect_batches(
    workouts: Iterable[Workout],
    *,
    user_id: str,
    exercise_name: str | None = None,
    default_bodyweight_kg: float = DEFAULT_BODYWEIGHT_KG,
) -> Iterator[ExerciseBatch]:
    """Yield per-workout exercise batches in fold order, optionally for one name."""
    wanted = exercise_key(exercise_name) if exercise_name is not None else None
    for workout in ordered_user_workouts(workouts, user_id):
        bodyweight = resolve_bodyweight(workout, None, default_bodyweight_kg)
        for batch in group_workout_sets(workout, bodyweight_kg=bodyweight):
            if wanted is None or batch.exercise_name == wanted:
                yield batch


def rebuild_records(
    workouts: Iterable[Workout],
    catalog: ExerciseCatalog,
    *,
    user_id: str,
    exercise_name: str | None = None,
    default_bodyweight_kg: float = DEFAULT_BODYWEIGHT_KG,
) -> RebuildResult:
    """Fold the complete history into fresh records, one per exact exercise name."""
    result = RebuildResult()
    for batch in collect_batches(
        workouts,
        user_id=user_id,
        exercise_name=exercise_name,
        default_bodyweight_kg=default_bodyweight_kg,
    ):
        name = batch.exercise_name
        profile = catalog.classify(
            name,
            declared_type=batch.declared_type,
            declared_category=batch.declared_category,
        )
        result.profiles.setdefault(name, profile)
        if not profile.is_tracked:
            logger.debug("Skipping %s exercise %r", profile.exercise_type, name)
            continue

        record = result.records.get(name)
        if is_already_merged(record, batch.workout_id):
            continue
        candidate = record if record is not None else new_record(user_id, profile)
        if fold_sets(candidate, batch.contributions, profile):
            # A name with a record reports the profile its sets were folded under.
            result.profiles[name] = profile
            if record is None:
                result.records[name] = candidate

    for name, profile in result.profiles.items():
        if name in result.records:
            continue
        result.skipped[name] = "untracked_type" if not profile.is_tracked else "no_valid_sets"
    return result


def rebuild_record(
    workouts: Iterable[Workout],
    catalog: ExerciseCatalog,
    *,
    user_id: str,
    exercise_name: str,
    default_bodyweight_kg: float = DEFAULT_BODYWEIGHT_KG,
) -> tuple[ExerciseRecord | None, ExerciseProfile]:
    """Rebuild one exact exercise name.

    Returns the record (None when no valid sets remain) and the profile the
    name resolved to, which callers use to leave untracked exercises alone.
    """
    name = exercise_key(exercise_name)
    result = rebuild_records(
        workouts,
        catalog,
        user_id=user_id,
        exercise_name=name,
        default_bodyweight_kg=default_bodyweight_kg,
    )
    profile = result.profiles.get(name) or catalog.classify(name)
    return result.records.get(name), profile
