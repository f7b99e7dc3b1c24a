"""Personal records and training volume aggregation for logged workouts."""

from .catalog import DEFAULT_CATALOG, ExerciseCatalog, ExerciseProfile
from .config import Config
from .engine import ExerciseOutcome, OperationReport, RecordsEngine
from .errors import RecordStoreError, RecordStoreTimeout, VersionConflict, WorkoutSourceError
from .models import ExerciseRecord, LoggedExercise, LoggedSet, Workout, exercise_key

__all__ = [
    "DEFAULT_CATALOG",
    "Config",
    "ExerciseCatalog",
    "ExerciseOutcome",
    "ExerciseProfile",
    "ExerciseRecord",
    "LoggedExercise",
    "LoggedSet",
    "OperationReport",
    "RecordStoreError",
    "RecordStoreTimeout",
    "RecordsEngine",
    "VersionConflict",
    "Workout",
    "WorkoutSourceError",
    "exercise_key",
]
