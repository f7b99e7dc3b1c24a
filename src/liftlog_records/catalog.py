"""Exercise catalog and classifier.

The catalog is only a metadata source (category, metric type). Aggregate
identity always stays the exact logged name; the canonical id resolved here is
used to look up metadata and to decide whether an exercise is bodyweight.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .models import LoggedExercise, exercise_key
from .utils import normalize_token

logger = logging.getLogger(__name__)

STRENGTH = "strength"
CARDIO = "cardio"
DEFAULT_CATEGORY = "General"

# Deliberately narrow: only dips and pull-up/chin-up patterns load bodyweight.
CALISTHENIC_IDS: frozenset[str] = frozenset({
    "pull_up", "chin_up", "dips_chest", "dips_triceps", "dominadas",
})
_DIP_EXCLUSIONS: tuple[str, ...] = ("cable", "machine", "face")
_PULL_UP_MARKERS: tuple[str, ...] = ("pull_up", "chin_up", "dominada")
_PULL_UP_EXCLUSIONS: tuple[str, ...] = ("cable", "machine", "row", "face")


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    en: str
    es: str
    category: str
    type: str = STRENGTH


DEFAULT_ENTRIES: tuple[CatalogEntry, ...] = (
    # Chest
    CatalogEntry("bench_press_barbell", "Barbell Bench Press", "Press Banca (Barra)", "Chest"),
    CatalogEntry("bench_press_dumbbell", "Dumbbell Bench Press", "Press Banca (Mancuernas)", "Chest"),
    CatalogEntry("incline_bench_barbell", "Incline Barbell Bench Press", "Press Inclinado (Barra)", "Chest"),
    CatalogEntry("dips_chest", "Dips", "Fondos", "Chest"),
    CatalogEntry("push_ups", "Push Ups", "Flexiones", "Chest"),
    CatalogEntry("chest_press_machine", "Machine Chest Press", "Press de Pecho (Máquina)", "Chest"),
    # Back
    CatalogEntry("deadlift", "Deadlift", "Peso Muerto", "Back"),
    CatalogEntry("pull_up", "Pull Up", "Dominadas", "Back"),
    CatalogEntry("lat_pulldown_wide", "Lat Pulldown", "Jalón al Pecho", "Back"),
    CatalogEntry("barbell_row", "Barbell Row", "Remo con Barra", "Back"),
    CatalogEntry("cable_row", "Seated Cable Row", "Remo en Polea Baja", "Back"),
    CatalogEntry("face_pull", "Face Pull", "Face Pull", "Shoulders"),
    # Shoulders
    CatalogEntry("overhead_press_barbell", "Barbell Overhead Press", "Press Militar (Barra)", "Shoulders"),
    CatalogEntry("shoulder_press_machine", "Machine Shoulder Press", "Press de Hombros (Máquina)", "Shoulders"),
    CatalogEntry("lateral_raise_dumbbell", "Dumbbell Lateral Raise", "Elevaciones Laterales", "Shoulders"),
    # Legs
    CatalogEntry("squat_barbell", "Barbell Squat", "Sentadilla (Barra)", "Quads"),
    CatalogEntry("front_squat", "Front Squat", "Sentadilla Frontal", "Quads"),
    CatalogEntry("leg_extension", "Leg Extension", "Extensiones de Cuádriceps", "Quads"),
    CatalogEntry("leg_press", "Leg Press", "Prensa de Piernas", "Quads"),
    CatalogEntry("hip_thrust", "Hip Thrust", "Hip Thrust / Puente de Glúteo", "Gluteos"),
    CatalogEntry("leg_curl_lying", "Lying Leg Curl", "Curl Femoral Tumbado", "Femorales"),
    CatalogEntry("calf_raise_seated", "Seated Calf Raise", "Elevación de Gemelos Sentado", "Gemelos"),
    # Arms
    CatalogEntry("bicep_curl_barbell", "Barbell Curl", "Curl de Bíceps (Barra)", "Biceps"),
    CatalogEntry("curl_dumbbell", "Dumbbell Curl", "Curl con Mancuernas", "Biceps"),
    CatalogEntry("overhead_tricep_extension", "Overhead Tricep Extension", "Extensión de Tríceps sobre cabeza", "Triceps"),
    # Core
    CatalogEntry("ab_wheel", "Ab Wheel", "Rueda Abdominal", "Abs"),
    # Conditioning
    CatalogEntry("running", "Running", "Correr", "Cardio", CARDIO),
    CatalogEntry("cycling", "Cycling", "Bicicleta", "Cardio", CARDIO),
    CatalogEntry("rowing_machine", "Rowing Machine", "Remo Ergómetro", "Cardio", CARDIO),
)


def is_bodyweight_exercise(canonical_id: str) -> bool:
    """Closed allow-list of calisthenic movements (dips, pull-ups, chin-ups)."""
    if canonical_id in CALISTHENIC_IDS:
        return True
    token = canonical_id.lower()
    is_dip = "dip" in token and not any(word in token for word in _DIP_EXCLUSIONS)
    is_pull_up = any(marker in token for marker in _PULL_UP_MARKERS) and not any(
        word in token for word in _PULL_UP_EXCLUSIONS
    )
    return is_dip or is_pull_up


@dataclass(frozen=True)
class ExerciseProfile:
    """Classification of one exact exercise name."""

    exercise_name: str
    canonical_id: str
    category: str
    exercise_type: str
    is_bodyweight: bool

    @property
    def is_tracked(self) -> bool:
        """Only strength exercises produce records."""
        return self.exercise_type == STRENGTH


class ExerciseCatalog:
    def __init__(self, entries: Iterable[CatalogEntry] = DEFAULT_ENTRIES) -> None:
        self._by_id: dict[str, CatalogEntry] = {}
        self._by_token: dict[str, str] = {}
        for entry in entries:
            self._by_id[entry.id] = entry
            for label in (entry.id, entry.en, entry.es):
                token = normalize_token(label)
                if token:
                    self._by_token.setdefault(token, entry.id)

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> ExerciseCatalog:
        """Build a catalog from ``{id, en, es, category, type}`` mappings."""
        entries = []
        for row in rows:
            entry_id = normalize_token(row.get("id"))
            if not entry_id:
                logger.warning("Skipping catalog row without id: %r", row)
                continue
            entries.append(CatalogEntry(
                id=entry_id,
                en=str(row.get("en") or entry_id),
                es=str(row.get("es") or row.get("en") or entry_id),
                category=str(row.get("category") or DEFAULT_CATEGORY),
                type=str(row.get("type") or STRENGTH).lower(),
            ))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._by_id)

    def resolve_canonical_id(self, exact_name: str) -> str:
        """Map a logged name to a catalog id, or to its folded slug if unknown."""
        token = normalize_token(exact_name) or ""
        return self._by_token.get(token, token)

    def lookup(self, canonical_id: str) -> CatalogEntry | None:
        return self._by_id.get(canonical_id)

    def classify(
        self,
        exact_name: str,
        *,
        declared_type: str | None = None,
        declared_category: str | None = None,
    ) -> ExerciseProfile:
        """Classify an exact name. Catalog metadata wins over what was logged."""
        canonical_id = self.resolve_canonical_id(exact_name)
        entry = self.lookup(canonical_id)
        exercise_type = (entry.type if entry else None) or declared_type or STRENGTH
        category = (entry.category if entry else None) or declared_category or DEFAULT_CATEGORY
        return ExerciseProfile(
            exercise_name=exercise_key(exact_name),
            canonical_id=canonical_id,
            category=category,
            exercise_type=exercise_type.strip().lower(),
            is_bodyweight=is_bodyweight_exercise(canonical_id),
        )

    def classify_exercise(self, exercise: LoggedExercise) -> ExerciseProfile:
        return self.classify(
            exercise.name,
            declared_type=exercise.exercise_type,
            declared_category=exercise.category,
        )


DEFAULT_CATALOG = ExerciseCatalog()
