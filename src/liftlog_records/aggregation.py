"""Record Aggregator.

One pure reducer, ``apply_set``, folds a single logged set into an
``ExerciseRecord``. Incremental merges fold one workout's sets into the stored
record; rebuilds fold the whole date-ordered history into an empty record.
Because both paths share the reducer and every "best" field only moves on a
strict improvement (first seen wins on ties), replaying the history workout by
workout yields exactly the rebuilt record.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from .catalog import ExerciseProfile
from .models import DailyMax, ExerciseRecord, SetMark, Workout
from .utils import epley_1rm, normalize_weight_kg, set_volume

logger = logging.getLogger(__name__)

DEFAULT_BODYWEIGHT_KG = 80.0

NEAR_MAX_MIN_REPS = 2
NEAR_MAX_MAX_REPS = 10
NEAR_MAX_SCORE_TOLERANCE = 1e-3


@dataclass(frozen=True)
class SetContribution:
    """A logged set together with everything needed to normalize it."""

    reps: int
    weight: float | None
    unit: str
    unilateral: bool
    bodyweight_kg: float
    performed_on: date
    workout_id: str

    @property
    def is_valid(self) -> bool:
        return self.reps > 0


@dataclass(frozen=True)
class ExerciseBatch:
    """All sets of one exact exercise name within one workout."""

    exercise_name: str
    workout_id: str
    performed_on: date
    contributions: tuple[SetContribution, ...]
    declared_type: str | None = None
    declared_category: str | None = None

    @property
    def has_valid_sets(self) -> bool:
        return any(c.is_valid for c in self.contributions)


def resolve_bodyweight(
    workout: Workout,
    athlete_bodyweight_kg: float | None = None,
    default_bodyweight_kg: float = DEFAULT_BODYWEIGHT_KG,
) -> float:
    """Caller-supplied bodyweight, else the one logged with the workout, else the default."""
    for candidate in (athlete_bodyweight_kg, workout.bodyweight_kg):
        if candidate is not None and candidate > 0:
            return float(candidate)
    return float(default_bodyweight_kg)


def group_workout_sets(workout: Workout, *, bodyweight_kg: float) -> list[ExerciseBatch]:
    """Group a workout's sets by exact exercise name, in logging order.

    Entries repeating the same name are combined into one batch; the first
    entry's declared type and category are kept.
    """
    order: list[str] = []
    sets_by_name: dict[str, list[SetContribution]] = {}
    declared: dict[str, tuple[str | None, str | None]] = {}

    for exercise in workout.exercises:
        name = exercise.key
        if not name:
            continue
        if name not in sets_by_name:
            order.append(name)
            sets_by_name[name] = []
            declared[name] = (exercise.exercise_type, exercise.category)
        for logged_set in exercise.sets:
            sets_by_name[name].append(SetContribution(
                reps=logged_set.reps,
                weight=logged_set.weight,
                unit=logged_set.unit,
                unilateral=exercise.is_unilateral(logged_set),
                bodyweight_kg=bodyweight_kg,
                performed_on=workout.performed_on,
                workout_id=workout.id,
            ))

    return [
        ExerciseBatch(
            exercise_name=name,
            workout_id=workout.id,
            performed_on=workout.performed_on,
            contributions=tuple(sets_by_name[name]),
            declared_type=declared[name][0],
            declared_category=declared[name][1],
        )
        for name in order
    ]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def new_record(user_id: str, profile: ExerciseProfile) -> ExerciseRecord:
    record = ExerciseRecord(user_id=user_id, exercise_name=profile.exercise_name)
    _apply_profile(record, profile)
    return record


def _apply_profile(record: ExerciseRecord, profile: ExerciseProfile) -> None:
    record.canonical_id = profile.canonical_id
    record.category = profile.category
    record.exercise_type = profile.exercise_type
    record.is_bodyweight = profile.is_bodyweight


def apply_set(record: ExerciseRecord, contribution: SetContribution) -> bool:
    """Fold one set into ``record`` in place. Returns False for inert sets."""
    if not contribution.is_valid:
        return False

    reps = contribution.reps
    external = normalize_weight_kg(contribution.weight, contribution.unit, contribution.unilateral)
    total = external + contribution.bodyweight_kg if record.is_bodyweight else external
    volume = set_volume(total, reps)
    estimate = epley_1rm(total, reps)
    mark = SetMark(
        weight_kg=total,
        reps=reps,
        performed_on=contribution.performed_on,
        workout_id=contribution.workout_id,
    )

    record.total_volume_kg += volume
    record.total_sets += 1
    if external > 0:
        record.has_external_load = True

    if volume > record.best_single_set_volume_kg:
        record.best_single_set = mark

    if estimate > record.max_1rm_kg:
        record.max_1rm_kg = estimate
        record.max_1rm_date = mark.performed_on
        record.max_1rm_workout_id = mark.workout_id

    _update_max_weight(record, mark)
    _update_max_reps(record, mark, external)

    day = record.daily_max.get(mark.performed_on)
    candidate = DailyMax(max_weight_kg=total, max_reps=reps)
    if candidate.beats(day):
        record.daily_max[mark.performed_on] = candidate

    _update_near_max_candidates(record, mark, external, estimate)
    record.best_near_max = select_near_max(record)
    return True


def _update_max_weight(record: ExerciseRecord, mark: SetMark) -> None:
    # A real single outranks any multi-rep set, so once one exists only
    # heavier singles can move max_weight.
    if mark.reps == 1:
        raises = mark.weight_kg > record.max_weight_kg
    else:
        raises = record.max_weight_reps != 1 and mark.weight_kg > record.max_weight_kg
    if raises:
        record.max_weight_kg = mark.weight_kg
        record.max_weight_reps = mark.reps
        record.max_weight_date = mark.performed_on
        record.max_weight_workout_id = mark.workout_id


def _update_max_reps(record: ExerciseRecord, mark: SetMark, external_kg: float) -> None:
    if record.is_bodyweight and external_kg > 0:
        return
    if mark.reps <= record.max_reps:
        return
    record.max_reps = mark.reps
    record.max_reps_date = mark.performed_on
    record.max_reps_workout_id = mark.workout_id
    # Unloaded calisthenics move the same mass every set, so the heaviest
    # set's rep count follows the rep record.
    if (
        record.is_bodyweight
        and record.max_weight_reps != 1
        and record.max_weight_kg == mark.weight_kg
    ):
        record.max_weight_reps = mark.reps


# ---------------------------------------------------------------------------
# Near-max scoring
# ---------------------------------------------------------------------------


def weighted_score(record: ExerciseRecord, mark: SetMark) -> float:
    if record.max_1rm_kg <= 0:
        return 0.0
    return epley_1rm(mark.weight_kg, mark.reps) / record.max_1rm_kg


def bodyweight_score(record: ExerciseRecord, mark: SetMark) -> float:
    if record.max_reps <= 0:
        return 0.0
    share = mark.reps / record.max_reps
    return share * share


def _update_near_max_candidates(
    record: ExerciseRecord,
    mark: SetMark,
    external_kg: float,
    estimate: float,
) -> None:
    if NEAR_MAX_MIN_REPS <= mark.reps <= NEAR_MAX_MAX_REPS and estimate > 0:
        current = record.weighted_near_max
        if current is None:
            record.weighted_near_max = mark
        else:
            new_score = weighted_score(record, mark)
            old_score = weighted_score(record, current)
            if new_score > old_score + NEAR_MAX_SCORE_TOLERANCE or (
                abs(new_score - old_score) <= NEAR_MAX_SCORE_TOLERANCE
                and mark.weight_kg > current.weight_kg
            ):
                record.weighted_near_max = mark

    if (
        record.is_bodyweight
        and external_kg == 0
        and NEAR_MAX_MIN_REPS <= mark.reps <= record.max_reps
    ):
        current = record.bodyweight_near_max
        if current is None:
            record.bodyweight_near_max = mark
        else:
            new_score = bodyweight_score(record, mark)
            old_score = bodyweight_score(record, current)
            if new_score > old_score or (new_score == old_score and mark.reps > current.reps):
                record.bodyweight_near_max = mark


def select_near_max(record: ExerciseRecord) -> SetMark | None:
    """Pick the near-max candidate of the mode currently in force."""
    if record.bodyweight_only and record.max_reps > 0:
        return record.bodyweight_near_max
    if record.max_1rm_kg > 0:
        return record.weighted_near_max
    return None


def restore_near_max_candidate(record: ExerciseRecord) -> ExerciseRecord:
    """Seed the active mode's candidate from ``best_near_max`` when it is missing.

    Documents written before candidates were stored carry only
    ``best_near_max``.
    """
    if record.best_near_max is None:
        return record
    if record.bodyweight_only and record.max_reps > 0:
        if record.bodyweight_near_max is None:
            record.bodyweight_near_max = record.best_near_max
    elif record.max_1rm_kg > 0 and record.weighted_near_max is None:
        record.weighted_near_max = record.best_near_max
    return record


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def finalize(record: ExerciseRecord, *, bodyweight_kg: float) -> ExerciseRecord:
    """Apply post-merge fixups. Bodyweight records never show a zero max weight."""
    if record.is_bodyweight and record.max_weight_kg <= 0 and record.total_sets > 0:
        record.max_weight_kg = bodyweight_kg
        record.max_weight_reps = record.max_reps
        record.max_weight_date = record.max_reps_date
        record.max_weight_workout_id = record.max_reps_workout_id
    return record


def fold_sets(
    record: ExerciseRecord,
    contributions: Iterable[SetContribution],
    profile: ExerciseProfile,
) -> bool:
    """Fold ``contributions`` into ``record`` in place.

    Returns False, leaving the record untouched, when none of them is a
    valid set.
    """
    valid = [c for c in contributions if c.is_valid]
    if not valid:
        return False
    _apply_profile(record, profile)
    for contribution in valid:
        apply_set(record, contribution)
        record.merged_workout_ids.add(contribution.workout_id)
    # The profile may have switched the near-max mode.
    record.best_near_max = select_near_max(record)
    finalize(record, bodyweight_kg=valid[-1].bodyweight_kg)
    return True


def merge_sets(
    record: ExerciseRecord | None,
    contributions: Iterable[SetContribution],
    profile: ExerciseProfile,
    *,
    user_id: str,
) -> ExerciseRecord | None:
    """Return ``record`` with ``contributions`` merged, or None if nothing is valid.

    The input record is never mutated.
    """
    merged = copy.deepcopy(record) if record is not None else new_record(user_id, profile)
    if not fold_sets(merged, contributions, profile):
        return None
    return merged


def is_already_merged(record: ExerciseRecord | None, workout_id: str) -> bool:
    return record is not None and workout_id in record.merged_workout_ids


def merge_workout_exercise(
    record: ExerciseRecord | None,
    batch: ExerciseBatch,
    profile: ExerciseProfile,
    *,
    user_id: str,
) -> ExerciseRecord | None:
    """Merge one workout's batch. Returns None when nothing should change."""
    if is_already_merged(record, batch.workout_id):
        logger.debug(
            "Workout %s already merged into %r", batch.workout_id, batch.exercise_name,
            extra={"records_user_id": user_id, "records_workout_id": batch.workout_id},
        )
        return None
    return merge_sets(record, batch.contributions, profile, user_id=user_id)
