"""Typed persistence failures surfaced by the records engine."""

from __future__ import annotations


class RecordStoreError(Exception):
    """A record-store read or write failed. Nothing was committed."""

    def __init__(
        self,
        message: str,
        *,
        user_id: str | None = None,
        exercise_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.exercise_name = exercise_name


class RecordStoreTimeout(RecordStoreError):
    """A store call did not complete within the configured timeout."""


class VersionConflict(RecordStoreError):
    """A conditional write found a different stored version."""

    def __init__(
        self,
        message: str,
        *,
        user_id: str | None = None,
        exercise_name: str | None = None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(message, user_id=user_id, exercise_name=exercise_name)
        self.expected_version = expected_version
        self.actual_version = actual_version


class WorkoutSourceError(RecordStoreError):
    """The workout history could not be read."""
