"""Domain types for the records engine.

Workouts, logged exercises and logged sets are immutable snapshots of what
the athlete recorded. ``ExerciseRecord`` is the durable aggregate kept per
(user, exact exercise name).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

CANONICAL_UNIT = "kg"

_WHITESPACE_RUN = re.compile(r"\s+")


def exercise_key(name: str) -> str:
    """Return the aggregation identity for a logged exercise name.

    Only whitespace is normalized. Case, accents and punctuation are kept, so
    "Curl de Bíceps (Barra)" and "Curl de Bíceps (Mancuernas)" stay separate
    records even though they share catalog metadata.
    """
    return _WHITESPACE_RUN.sub(" ", name or "").strip()


@dataclass(frozen=True)
class LoggedSet:
    """A single logged set. ``weight`` is None for pure bodyweight sets."""

    reps: int = 0
    weight: float | None = None
    unit: str = CANONICAL_UNIT
    unilateral: bool | None = None  # None = inherit from the exercise

    def __post_init__(self) -> None:
        if self.reps < 0:
            raise ValueError("reps must be non-negative")
        if self.weight is not None and self.weight < 0:
            raise ValueError("weight must be non-negative")

    @property
    def is_valid(self) -> bool:
        """Sets with zero reps are kept in the log but never aggregated."""
        return self.reps > 0


@dataclass(frozen=True)
class LoggedExercise:
    name: str
    sets: tuple[LoggedSet, ...] = ()
    unilateral: bool = False
    category: str | None = None
    exercise_type: str | None = None

    @property
    def key(self) -> str:
        return exercise_key(self.name)

    def is_unilateral(self, logged_set: LoggedSet) -> bool:
        if logged_set.unilateral is None:
            return self.unilateral
        return logged_set.unilateral


@dataclass(frozen=True)
class Workout:
    id: str
    user_id: str
    performed_on: date
    exercises: tuple[LoggedExercise, ...] = ()
    source: str = "manual"  # web | audio | manual
    bodyweight_kg: float | None = None

    def exercise_keys(self) -> list[str]:
        """Distinct exact exercise names in logging order."""
        keys: list[str] = []
        for exercise in self.exercises:
            key = exercise.key
            if key and key not in keys:
                keys.append(key)
        return keys


@dataclass(frozen=True)
class SetMark:
    """A concrete set held as a record: total moved weight, reps and provenance."""

    weight_kg: float
    reps: int
    performed_on: date
    workout_id: str

    @property
    def volume_kg(self) -> float:
        return self.weight_kg * self.reps


@dataclass(frozen=True)
class DailyMax:
    max_weight_kg: float
    max_reps: int

    def beats(self, other: DailyMax | None) -> bool:
        """Heavier wins; on equal weight more reps wins. Ties keep ``other``."""
        if other is None:
            return True
        return (self.max_weight_kg, self.max_reps) > (other.max_weight_kg, other.max_reps)


@dataclass
class ExerciseRecord:
    """Per-(user, exact exercise name) performance aggregate.

    ``version`` is the optimistic-concurrency token of the stored row; 0 means
    the record has never been written.
    """

    user_id: str
    exercise_name: str
    canonical_id: str = ""
    category: str = "General"
    exercise_type: str = "strength"
    is_bodyweight: bool = False
    unit: str = CANONICAL_UNIT

    # Heaviest weight actually lifted, never an estimate.
    max_weight_kg: float = 0.0
    max_weight_reps: int = 0
    max_weight_date: date | None = None
    max_weight_workout_id: str | None = None

    max_1rm_kg: float = 0.0
    max_1rm_date: date | None = None
    max_1rm_workout_id: str | None = None

    max_reps: int = 0
    max_reps_date: date | None = None
    max_reps_workout_id: str | None = None

    total_volume_kg: float = 0.0
    total_sets: int = 0

    best_single_set: SetMark | None = None
    best_near_max: SetMark | None = None
    # Both near-max modes are tracked so a later mode switch needs no history.
    weighted_near_max: SetMark | None = None
    bodyweight_near_max: SetMark | None = None
    has_external_load: bool = False

    daily_max: dict[date, DailyMax] = field(default_factory=dict)
    merged_workout_ids: set[str] = field(default_factory=set)
    version: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.exercise_name)

    @property
    def best_single_set_volume_kg(self) -> float:
        return self.best_single_set.volume_kg if self.best_single_set else 0.0

    @property
    def bodyweight_only(self) -> bool:
        """True while every merged set of a bodyweight exercise had no added load."""
        return self.is_bodyweight and not self.has_external_load

    def daily_max_desc(self) -> list[tuple[date, DailyMax]]:
        """Daily maxima, newest date first (the order progression charts read)."""
        return sorted(self.daily_max.items(), key=lambda item: item[0], reverse=True)
