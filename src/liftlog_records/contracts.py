"""Inbound workout contract.

Workouts arrive as rows of the hosted datastore: ``structured_data`` holds the
logged exercises (either as a JSON object or as a JSON-encoded string, since
older clients stored it as text). This module validates that shape and turns
it into the immutable ``Workout`` snapshot the engine works on.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import LoggedExercise, LoggedSet, Workout, exercise_key
from .utils import normalize_unit

logger = logging.getLogger(__name__)

WORKOUT_SOURCES: tuple[str, ...] = ("web", "audio", "manual")


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


class SetPayload(BaseModel):
    reps: int = Field(default=0, ge=0)
    weight: float | None = Field(default=None, ge=0)
    unit: str = "kg"
    unilateral: bool | None = None

    @field_validator("reps", mode="before")
    @classmethod
    def default_missing_reps(cls, value: Any) -> Any:
        if value is None or value == "":
            return 0
        return value

    @field_validator("weight", mode="before")
    @classmethod
    def blank_weight_is_missing(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @field_validator("unit", mode="before")
    @classmethod
    def normalize_set_unit(cls, value: Any) -> str:
        return normalize_unit(value if isinstance(value, str) else None)

    def to_logged_set(self) -> LoggedSet:
        return LoggedSet(
            reps=self.reps,
            weight=self.weight,
            unit=self.unit,
            unilateral=self.unilateral,
        )


class ExercisePayload(BaseModel):
    name: str | None = None
    category: str | None = None
    type: str | None = None
    unilateral: bool = False
    sets: list[SetPayload] = Field(default_factory=list)

    @field_validator("name", "category", "type", mode="before")
    @classmethod
    def normalize_optional_fields(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("unilateral", mode="before")
    @classmethod
    def default_missing_unilateral(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("sets", mode="before")
    @classmethod
    def default_missing_sets(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_logged_exercise(self) -> LoggedExercise:
        return LoggedExercise(
            name=exercise_key(self.name or ""),
            sets=tuple(s.to_logged_set() for s in self.sets),
            unilateral=self.unilateral,
            category=self.category,
            exercise_type=self.type.lower() if self.type else None,
        )


class WorkoutDataPayload(BaseModel):
    exercises: list[ExercisePayload] = Field(default_factory=list)
    notes: str | None = None

    @field_validator("exercises", mode="before")
    @classmethod
    def default_missing_exercises(cls, value: Any) -> Any:
        return [] if value is None else value


class WorkoutPayload(BaseModel):
    id: str
    user_id: str
    date: dt.date
    structured_data: WorkoutDataPayload = Field(default_factory=WorkoutDataPayload)
    source: str = "manual"
    user_weight: float | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            cleaned = value.strip()
            if not cleaned:
                raise ValueError("identifier must not be empty")
            return cleaned
        return value

    @field_validator("date", mode="before")
    @classmethod
    def strip_time_component(cls, value: Any) -> Any:
        # Timestamps are bucketed by their calendar day as written.
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value

    @field_validator("structured_data", mode="before")
    @classmethod
    def decode_structured_data(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, (str, bytes)):
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError(f"structured_data is not valid JSON: {exc.msg}") from exc
        return value

    @field_validator("source", mode="before")
    @classmethod
    def normalize_source(cls, value: Any) -> str:
        normalized = (_normalize_optional_text(value) or "manual").lower()
        if normalized not in WORKOUT_SOURCES:
            allowed = ", ".join(WORKOUT_SOURCES)
            raise ValueError(f"source must be one of: {allowed}")
        return normalized

    @field_validator("user_weight", mode="before")
    @classmethod
    def missing_bodyweight(cls, value: Any) -> Any:
        if value in (None, "", 0, 0.0):
            return None
        return value

    @model_validator(mode="after")
    def validate_bodyweight(self) -> "WorkoutPayload":
        if self.user_weight is not None and self.user_weight < 0:
            raise ValueError("user_weight must be positive when present")
        return self

    def to_workout(self) -> Workout:
        exercises = []
        for index, exercise in enumerate(self.structured_data.exercises):
            if not exercise.name:
                logger.warning(
                    "Skipping unnamed exercise #%d in workout %s", index, self.id,
                    extra={"records_workout_id": self.id, "records_user_id": self.user_id},
                )
                continue
            exercises.append(exercise.to_logged_exercise())
        return Workout(
            id=self.id,
            user_id=self.user_id,
            performed_on=self.date,
            exercises=tuple(exercises),
            source=self.source,
            bodyweight_kg=self.user_weight,
        )


def validate_workout_payload(payload: dict[str, Any]) -> WorkoutPayload:
    """Validate a raw workout row against the inbound contract."""
    return WorkoutPayload.model_validate(payload)


def parse_workout(payload: dict[str, Any]) -> Workout:
    return validate_workout_payload(payload).to_workout()


def parse_workouts(payloads: list[dict[str, Any]]) -> list[Workout]:
    return [parse_workout(payload) for payload in payloads]
