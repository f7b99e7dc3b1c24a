"""Administrative CLI for merging workouts and recalculating personal records."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Sequence

import psycopg

from .config import Config
from .contracts import parse_workout, parse_workouts
from .engine import RecordsEngine
from .logging import setup_logging
from .models import Workout
from .pg_repository import PostgresRecordRepository, PostgresWorkoutSource
from .repository import InMemoryRecordRepository, InMemoryWorkoutSource
from .serializers import record_to_public_dict


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liftlog-records",
        description="Merge workouts into personal records or rebuild them from history.",
    )
    parser.add_argument(
        "--workouts-file",
        type=Path,
        default=None,
        help=(
            "JSON list of workout rows. Uses an in-memory store seeded from this "
            "history instead of DATABASE_URL."
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    merge = sub.add_parser("merge", help="Merge one workout into its owner's records.")
    merge.add_argument("--workout-file", type=Path, required=True, help="JSON workout row.")
    merge.add_argument(
        "--bodyweight-kg",
        type=float,
        default=None,
        help="Athlete bodyweight; defaults to the workout's own value, then LIFTLOG_DEFAULT_BODYWEIGHT_KG.",
    )

    recalc_all = sub.add_parser("recalculate-all", help="Rebuild every record of a user.")
    recalc_all.add_argument("--user-id", required=True)

    recalc_one = sub.add_parser("recalculate-one", help="Rebuild the record of one exact exercise name.")
    recalc_one.add_argument("--user-id", required=True)
    recalc_one.add_argument("--exercise", required=True, help="Exact exercise name as logged.")

    show = sub.add_parser("show", help="Print a user's records and total volume.")
    show.add_argument("--user-id", required=True)
    return parser


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)


def _load_workouts_file(path: Path) -> list[Workout]:
    rows = _read_json(path)
    if not isinstance(rows, list):
        raise SystemExit(f"{path}: expected a JSON list of workouts")
    return parse_workouts(rows)


async def _execute(engine: RecordsEngine, args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "merge":
        workout = parse_workout(_read_json(args.workout_file))
        report = await engine.merge_workout(workout, args.bodyweight_kg)
        return report.to_dict()
    if args.command == "recalculate-all":
        return (await engine.recalculate_all(args.user_id)).to_dict()
    if args.command == "recalculate-one":
        return (await engine.recalculate_one(args.user_id, args.exercise)).to_dict()

    records = await engine.get_records(args.user_id)
    return {
        "user_id": args.user_id,
        "total_volume_kg": await engine.total_volume(args.user_id),
        "records": [record_to_public_dict(r) for r in records],
    }


def _target_user(args: argparse.Namespace) -> str | None:
    if args.command == "merge":
        return parse_workout(_read_json(args.workout_file)).user_id
    return args.user_id


async def _run(args: argparse.Namespace) -> int:
    config = Config.from_env()
    setup_logging(config.log_format, logging.DEBUG if args.verbose else logging.WARNING)

    if args.workouts_file is not None:
        history = _load_workouts_file(args.workouts_file)
        source = InMemoryWorkoutSource(history)
        engine = RecordsEngine(InMemoryRecordRepository(), source, config=config)
        user_id = _target_user(args)
        if user_id is not None and args.command in ("merge", "show"):
            # Seed the store so the command sees the records the history implies.
            await engine.recalculate_all(user_id)
        result = await _execute(engine, args)
    else:
        database_url = config.require_database_url()
        async with await psycopg.AsyncConnection.connect(database_url, autocommit=True) as conn:
            lock = asyncio.Lock()
            engine = RecordsEngine(
                PostgresRecordRepository(conn, lock=lock),
                PostgresWorkoutSource(conn, lock=lock),
                config=config,
            )
            result = await _execute(engine, args)

    print(json.dumps(result, indent=2, sort_keys=True, default=str))
    return 0 if result.get("ok", True) else 1


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
