"""PostgreSQL record store and workout source (psycopg 3, async).

Records live in ``user_records`` as one JSONB document per
``(user_id, exercise_name)`` with an integer ``version`` used for
conditional writes.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import replace
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json
from pydantic import ValidationError

from .contracts import parse_workout
from .errors import RecordStoreError, VersionConflict, WorkoutSourceError
from .models import ExerciseRecord, Workout, exercise_key
from .serializers import record_from_dict, record_to_dict

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_records (
    user_id TEXT NOT NULL,
    exercise_name TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    version INTEGER NOT NULL DEFAULT 1,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, exercise_name)
);

CREATE TABLE IF NOT EXISTS workouts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    date DATE NOT NULL,
    structured_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    source TEXT NOT NULL DEFAULT 'manual',
    user_weight DOUBLE PRECISION,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS workouts_user_date_idx ON workouts (user_id, date);
"""


async def ensure_schema(conn: psycopg.AsyncConnection[Any]) -> None:
    """Create the tables this package reads and writes if they are missing."""
    async with conn.transaction():
        await conn.execute(SCHEMA_SQL)


class PostgresRecordRepository:
    """Record store over one connection.

    Calls are serialized by `lock` so transactions never overlap on the
    connection. Objects sharing the connection must share the lock.
    """

    def __init__(self, conn: psycopg.AsyncConnection[Any], *, lock: asyncio.Lock | None = None) -> None:
        self._conn = conn
        self._lock = lock if lock is not None else asyncio.Lock()

    async def get(self, user_id: str, exercise_name: str) -> ExerciseRecord | None:
        name = exercise_key(exercise_name)
        async with self._lock:
            try:
                async with self._conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT data, version
                        FROM user_records
                        WHERE user_id = %s AND exercise_name = %s
                        """,
                        (user_id, name),
                    )
                    row = await cur.fetchone()
            except psycopg.Error as exc:
                raise RecordStoreError(
                    f"Failed to read record {name!r}: {exc}", user_id=user_id, exercise_name=name
                ) from exc
        if row is None:
            return None
        return record_from_dict(user_id, name, row["data"], version=int(row["version"]))

    async def list_all(self, user_id: str) -> list[ExerciseRecord]:
        async with self._lock:
            try:
                async with self._conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT exercise_name, data, version
                        FROM user_records
                        WHERE user_id = %s
                        ORDER BY exercise_name ASC
                        """,
                        (user_id,),
                    )
                    rows = await cur.fetchall()
            except psycopg.Error as exc:
                raise RecordStoreError(f"Failed to list records: {exc}", user_id=user_id) from exc
        return [
            record_from_dict(user_id, row["exercise_name"], row["data"], version=int(row["version"]))
            for row in rows
        ]

    async def upsert(self, record: ExerciseRecord) -> ExerciseRecord:
        """Conditional write. Returns the record carrying its new version."""
        async with self._lock:
            try:
                async with self._conn.transaction():
                    async with self._conn.cursor(row_factory=dict_row) as cur:
                        if record.version == 0:
                            await cur.execute(
                                """
                                INSERT INTO user_records (user_id, exercise_name, data, version, updated_at)
                                VALUES (%s, %s, %s, 1, NOW())
                                ON CONFLICT (user_id, exercise_name) DO NOTHING
                                RETURNING version
                                """,
                                (record.user_id, record.exercise_name, Json(record_to_dict(record))),
                            )
                        else:
                            await cur.execute(
                                """
                                UPDATE user_records
                                SET data = %s, version = version + 1, updated_at = NOW()
                                WHERE user_id = %s AND exercise_name = %s AND version = %s
                                RETURNING version
                                """,
                                (
                                    Json(record_to_dict(record)),
                                    record.user_id,
                                    record.exercise_name,
                                    record.version,
                                ),
                            )
                        row = await cur.fetchone()
                        if row is None:
                            actual = await self._current_version(cur, record.user_id, record.exercise_name)
                            raise VersionConflict(
                                f"Record version mismatch for {record.exercise_name!r}",
                                user_id=record.user_id,
                                exercise_name=record.exercise_name,
                                expected_version=record.version,
                                actual_version=actual,
                            )
            except psycopg.Error as exc:
                raise RecordStoreError(
                    f"Failed to write record {record.exercise_name!r}: {exc}",
                    user_id=record.user_id,
                    exercise_name=record.exercise_name,
                ) from exc

        return replace(copy.deepcopy(record), version=int(row["version"]))

    async def delete(
        self,
        user_id: str,
        exercise_name: str,
        expected_version: int | None = None,
    ) -> bool:
        name = exercise_key(exercise_name)
        async with self._lock:
            try:
                async with self._conn.transaction():
                    async with self._conn.cursor(row_factory=dict_row) as cur:
                        if expected_version is None:
                            await cur.execute(
                                """
                                DELETE FROM user_records
                                WHERE user_id = %s AND exercise_name = %s
                                RETURNING version
                                """,
                                (user_id, name),
                            )
                        else:
                            await cur.execute(
                                """
                                DELETE FROM user_records
                                WHERE user_id = %s AND exercise_name = %s AND version = %s
                                RETURNING version
                                """,
                                (user_id, name, expected_version),
                            )
                        row = await cur.fetchone()
                        if row is None and expected_version is not None:
                            actual = await self._current_version(cur, user_id, name)
                            if actual is not None:
                                raise VersionConflict(
                                    f"Record version mismatch for {name!r}",
                                    user_id=user_id,
                                    exercise_name=name,
                                    expected_version=expected_version,
                                    actual_version=actual,
                                )
            except psycopg.Error as exc:
                raise RecordStoreError(
                    f"Failed to delete record {name!r}: {exc}", user_id=user_id, exercise_name=name
                ) from exc
        return row is not None

    async def total_volume(self, user_id: str) -> float:
        async with self._lock:
            try:
                async with self._conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT COALESCE(SUM((data->>'total_volume_kg')::numeric), 0) AS total
                        FROM user_records
                        WHERE user_id = %s
                        """,
                        (user_id,),
                    )
                    row = await cur.fetchone()
            except psycopg.Error as exc:
                raise RecordStoreError(f"Failed to sum volume: {exc}", user_id=user_id) from exc
        return float(row["total"]) if row and row["total"] is not None else 0.0

    @staticmethod
    async def _current_version(cur: Any, user_id: str, exercise_name: str) -> int | None:
        await cur.execute(
            "SELECT version FROM user_records WHERE user_id = %s AND exercise_name = %s",
            (user_id, exercise_name),
        )
        row = await cur.fetchone()
        return int(row["version"]) if row else None


class PostgresWorkoutSource:
    def __init__(self, conn: psycopg.AsyncConnection[Any], *, lock: asyncio.Lock | None = None) -> None:
        self._conn = conn
        self._lock = lock if lock is not None else asyncio.Lock()

    async def list_workouts(self, user_id: str) -> list[Workout]:
        async with self._lock:
            try:
                async with self._conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT id, user_id, date, structured_data, source, user_weight
                        FROM workouts
                        WHERE user_id = %s
                        ORDER BY date ASC, created_at ASC
                        """,
                        (user_id,),
                    )
                    rows = await cur.fetchall()
            except psycopg.Error as exc:
                raise WorkoutSourceError(f"Failed to load workouts: {exc}", user_id=user_id) from exc

        workouts: list[Workout] = []
        for row in rows:
            try:
                workouts.append(parse_workout(dict(row)))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed workout %s: %s", row.get("id"), exc.errors()[:1],
                    extra={"records_user_id": user_id, "records_workout_id": str(row.get("id"))},
                )
        return workouts
