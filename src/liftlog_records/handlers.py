"""Handlers for the application events that touch personal records.

New workouts are merged incrementally. Edits and deletions cannot be undone
by a merge, so they rebuild every affected exercise name from history.
"""

from __future__ import annotations

import logging
from typing import Any

from .contracts import parse_workout, parse_workouts
from .engine import OperationReport, RecordsEngine
from .models import Workout, exercise_key
from .registry import get_handler, register

logger = logging.getLogger(__name__)


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"payload.{key} must be a non-empty string")
    return value.strip()


def _optional_workout(payload: dict[str, Any], key: str) -> Workout | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"payload.{key} must be an object")
    return parse_workout(raw)


async def _history(engine: RecordsEngine, payload: dict[str, Any], user_id: str) -> list[Workout]:
    """Workout history given inline as ``payload.workouts``, else from the workout source."""
    raw = payload.get("workouts")
    if raw is None:
        return await engine.load_workouts(user_id)
    if not isinstance(raw, list):
        raise ValueError("payload.workouts must be a list")
    return parse_workouts(raw)


async def _recalculate_names(
    engine: RecordsEngine,
    payload: dict[str, Any],
    operation: str,
    user_id: str,
    names: list[str],
) -> OperationReport:
    if not names:
        return OperationReport(operation=operation, user_id=user_id)
    history = await _history(engine, payload, user_id)
    reports = [await engine.recalculate_one(user_id, name, history) for name in names]
    return OperationReport.combine(operation, user_id, reports)


def _distinct_names(*workouts: Workout | None) -> list[str]:
    names: list[str] = []
    for workout in workouts:
        if workout is None:
            continue
        for name in workout.exercise_keys():
            if name not in names:
                names.append(name)
    return names


@register("workout.logged")
async def handle_workout_logged(engine: RecordsEngine, payload: dict[str, Any]) -> OperationReport:
    workout = _optional_workout(payload, "workout")
    if workout is None:
        raise ValueError("payload.workout is required")
    bodyweight = payload.get("athlete_bodyweight_kg")
    return await engine.merge_workout(workout, float(bodyweight) if bodyweight else None)


@register("workout.updated")
async def handle_workout_updated(engine: RecordsEngine, payload: dict[str, Any]) -> OperationReport:
    previous = _optional_workout(payload, "previous")
    current = _optional_workout(payload, "workout")
    if previous is None and current is None:
        raise ValueError("payload.previous or payload.workout is required")
    user_id = (current or previous).user_id
    names = _distinct_names(previous, current)
    logger.info(
        "Workout %s edited; recalculating %d exercise(s)", (current or previous).id, len(names),
        extra={"records_user_id": user_id},
    )
    return await _recalculate_names(engine, payload, "workout.updated", user_id, names)


@register("workout.deleted")
async def handle_workout_deleted(engine: RecordsEngine, payload: dict[str, Any]) -> OperationReport:
    workout = _optional_workout(payload, "workout")
    if workout is None:
        raise ValueError("payload.workout is required")
    names = _distinct_names(workout)
    return await _recalculate_names(engine, payload, "workout.deleted", workout.user_id, names)


@register("exercise.updated")
async def handle_exercise_updated(engine: RecordsEngine, payload: dict[str, Any]) -> OperationReport:
    """A logged exercise was renamed or its sets edited."""
    user_id = _require_text(payload, "user_id")
    names = [exercise_key(_require_text(payload, "exercise_name"))]
    previous_name = payload.get("previous_name")
    if isinstance(previous_name, str) and exercise_key(previous_name) not in names:
        names.insert(0, exercise_key(previous_name))
    return await _recalculate_names(engine, payload, "exercise.updated", user_id, names)


@register("exercise.deleted")
async def handle_exercise_deleted(engine: RecordsEngine, payload: dict[str, Any]) -> OperationReport:
    user_id = _require_text(payload, "user_id")
    name = exercise_key(_require_text(payload, "exercise_name"))
    return await _recalculate_names(engine, payload, "exercise.deleted", user_id, [name])


@register("records.rebuild")
async def handle_records_rebuild(engine: RecordsEngine, payload: dict[str, Any]) -> OperationReport:
    user_id = _require_text(payload, "user_id")
    workouts = await _history(engine, payload, user_id) if "workouts" in payload else None
    return await engine.recalculate_all(user_id, workouts)


async def dispatch(engine: RecordsEngine, event_type: str, payload: dict[str, Any]) -> OperationReport:
    handler = get_handler(event_type)
    if handler is None:
        raise ValueError(f"No handler registered for event_type={event_type!r}")
    return await handler(engine, payload)
