"""ExerciseRecord <-> JSON document.

Reads are tolerant: stored documents written by older clients may miss
fields or carry the flat ``best_single_set_*`` / ``best_near_max_*`` layout.
Anything missing or malformed defaults to zero/empty instead of failing.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from .aggregation import restore_near_max_candidate
from .models import DailyMax, ExerciseRecord, SetMark

logger = logging.getLogger(__name__)

_SET_MARK_FIELDS = ("best_single_set", "best_near_max", "weighted_near_max", "bodyweight_near_max")


# ---------------------------------------------------------------------------
# Tolerant scalar readers
# ---------------------------------------------------------------------------


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if result == result else 0.0  # NaN


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


_TRUE_TEXT = frozenset({"true", "t", "yes", "y", "1"})


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value.split("T", 1)[0])
        except ValueError:
            logger.warning("Ignoring malformed stored date %r", value)
    return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Set marks and daily maxima
# ---------------------------------------------------------------------------


def set_mark_to_dict(mark: SetMark | None) -> dict[str, Any] | None:
    if mark is None:
        return None
    return {
        "weight_kg": mark.weight_kg,
        "reps": mark.reps,
        "volume_kg": mark.volume_kg,
        "date": _iso(mark.performed_on),
        "workout_id": mark.workout_id,
    }


def set_mark_from_dict(data: Any) -> SetMark | None:
    if not isinstance(data, dict):
        return None
    reps = _as_int(data.get("reps"))
    performed_on = _as_date(data.get("date"))
    if reps <= 0 or performed_on is None:
        return None
    return SetMark(
        weight_kg=_as_float(data.get("weight_kg")),
        reps=reps,
        performed_on=performed_on,
        workout_id=_as_text(data.get("workout_id")) or "",
    )


def _legacy_set_mark(data: dict[str, Any], prefix: str) -> SetMark | None:
    return set_mark_from_dict({
        "weight_kg": data.get(f"{prefix}_weight_kg"),
        "reps": data.get(f"{prefix}_reps"),
        "date": data.get(f"{prefix}_date"),
        "workout_id": data.get(f"{prefix}_workout_id"),
    })


def daily_max_to_list(record: ExerciseRecord) -> list[dict[str, Any]]:
    """Newest date first."""
    return [
        {"date": day.isoformat(), "max_weight_kg": entry.max_weight_kg, "max_reps": entry.max_reps}
        for day, entry in record.daily_max_desc()
    ]


def daily_max_from_list(items: Any) -> dict[date, DailyMax]:
    result: dict[date, DailyMax] = {}
    if isinstance(items, dict):
        items = [{"date": k, **v} for k, v in items.items() if isinstance(v, dict)]
    if not isinstance(items, list):
        return result
    for item in items:
        if not isinstance(item, dict):
            continue
        day = _as_date(item.get("date"))
        if day is None:
            continue
        candidate = DailyMax(
            max_weight_kg=_as_float(item.get("max_weight_kg")),
            max_reps=_as_int(item.get("max_reps")),
        )
        if candidate.beats(result.get(day)):
            result[day] = candidate
    return result


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def record_to_dict(record: ExerciseRecord) -> dict[str, Any]:
    """Document stored in the ``data`` column. Key and version live outside it."""
    return {
        "canonical_id": record.canonical_id,
        "category": record.category,
        "exercise_type": record.exercise_type,
        "is_bodyweight": record.is_bodyweight,
        "unit": record.unit,
        "max_weight_kg": record.max_weight_kg,
        "max_weight_reps": record.max_weight_reps,
        "max_weight_date": _iso(record.max_weight_date),
        "max_weight_workout_id": record.max_weight_workout_id,
        "max_1rm_kg": record.max_1rm_kg,
        "max_1rm_date": _iso(record.max_1rm_date),
        "max_1rm_workout_id": record.max_1rm_workout_id,
        "max_reps": record.max_reps,
        "max_reps_date": _iso(record.max_reps_date),
        "max_reps_workout_id": record.max_reps_workout_id,
        "total_volume_kg": record.total_volume_kg,
        "total_sets": record.total_sets,
        "has_external_load": record.has_external_load,
        "best_single_set": set_mark_to_dict(record.best_single_set),
        "best_near_max": set_mark_to_dict(record.best_near_max),
        "weighted_near_max": set_mark_to_dict(record.weighted_near_max),
        "bodyweight_near_max": set_mark_to_dict(record.bodyweight_near_max),
        "daily_max": daily_max_to_list(record),
        "merged_workout_ids": sorted(record.merged_workout_ids),
    }


def record_from_dict(
    user_id: str,
    exercise_name: str,
    data: dict[str, Any] | None,
    *,
    version: int = 0,
) -> ExerciseRecord:
    data = data if isinstance(data, dict) else {}
    marks: dict[str, SetMark | None] = {}
    for name in _SET_MARK_FIELDS:
        if name in data:
            marks[name] = set_mark_from_dict(data.get(name))
        else:
            marks[name] = _legacy_set_mark(data, name)

    merged_ids = data.get("merged_workout_ids")
    record = ExerciseRecord(
        user_id=user_id,
        exercise_name=exercise_name,
        canonical_id=_as_text(data.get("canonical_id")) or "",
        category=_as_text(data.get("category")) or "General",
        exercise_type=(_as_text(data.get("exercise_type")) or "strength").lower(),
        is_bodyweight=_as_bool(data.get("is_bodyweight")),
        unit=_as_text(data.get("unit")) or "kg",
        max_weight_kg=_as_float(data.get("max_weight_kg")),
        max_weight_reps=_as_int(data.get("max_weight_reps")),
        max_weight_date=_as_date(data.get("max_weight_date")),
        max_weight_workout_id=_as_text(data.get("max_weight_workout_id")),
        max_1rm_kg=_as_float(data.get("max_1rm_kg")),
        max_1rm_date=_as_date(data.get("max_1rm_date")),
        max_1rm_workout_id=_as_text(data.get("max_1rm_workout_id")),
        max_reps=_as_int(data.get("max_reps")),
        max_reps_date=_as_date(data.get("max_reps_date")),
        max_reps_workout_id=_as_text(data.get("max_reps_workout_id")),
        total_volume_kg=_as_float(data.get("total_volume_kg")),
        total_sets=_as_int(data.get("total_sets")),
        has_external_load=_as_bool(data.get("has_external_load")),
        best_single_set=marks["best_single_set"],
        best_near_max=marks["best_near_max"],
        weighted_near_max=marks["weighted_near_max"],
        bodyweight_near_max=marks["bodyweight_near_max"],
        daily_max=daily_max_from_list(data.get("daily_max")),
        merged_workout_ids={str(i) for i in merged_ids} if isinstance(merged_ids, list) else set(),
        version=version,
    )
    return restore_near_max_candidate(record)


def record_to_public_dict(record: ExerciseRecord) -> dict[str, Any]:
    """Full representation including key and version, as printed by the CLI."""
    return {
        "user_id": record.user_id,
        "exercise_name": record.exercise_name,
        "version": record.version,
        **record_to_dict(record),
    }
