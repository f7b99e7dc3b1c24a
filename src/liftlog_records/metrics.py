"""In-memory engine metrics.

Asyncio is single-threaded, so plain dicts are safe without locking.
"""

import time

_start_time = time.monotonic()

_COUNTERS = ("merges", "recalculations", "skipped_exercises", "write_conflicts", "store_failures")

_metrics: dict = {name: 0 for name in _COUNTERS}
_metrics["operations"] = {}


def record_operation(operation: str, duration_ms: float, success: bool) -> None:
    """Record one engine operation (merge_workout, recalculate_all, ...) with timing."""
    op = _metrics["operations"].setdefault(operation, {
        "invocations": 0,
        "successes": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    op["invocations"] += 1
    op["total_duration_ms"] += duration_ms
    if success:
        op["successes"] += 1
    else:
        op["failures"] += 1


def record_merge() -> None:
    _metrics["merges"] += 1


def record_recalculation() -> None:
    _metrics["recalculations"] += 1


def record_skipped_exercise() -> None:
    _metrics["skipped_exercises"] += 1


def record_write_conflict() -> None:
    _metrics["write_conflicts"] += 1


def record_store_failure() -> None:
    _metrics["store_failures"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        **{name: _metrics[name] for name in _COUNTERS},
        "operations": {
            name: dict(stats)
            for name, stats in _metrics["operations"].items()
        },
    }


def reset_metrics() -> None:
    for name in _COUNTERS:
        _metrics[name] = 0
    _metrics["operations"] = {}
