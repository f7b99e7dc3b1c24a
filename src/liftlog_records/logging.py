"""Log output for liftlog-records.

Modules log through ``logging.getLogger(__name__)`` and attach the record
they are working on as ``records_*`` extras (``records_user_id``,
``records_exercise_name``, ``records_workout_id``, ``records_operation``,
``records_duration_ms``). The formatters here lift those extras out of the
``LogRecord`` into a ``context`` mapping with the prefix dropped, so both the
JSON and the text output name the user and exercise a line is about.
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_PREFIX = "records_"
LOG_FORMATS = ("json", "text")
TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def record_context(record: logging.LogRecord) -> dict:
    """The ``records_*`` extras of ``record``, keyed without the prefix."""
    return {
        key[len(CONTEXT_PREFIX):]: value
        for key, value in vars(record).items()
        if key.startswith(CONTEXT_PREFIX)
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line; record context nested under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.lineno}",
        }
        context = record_context(record)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain text lines followed by ``key=value`` pairs of the record context."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        head, newline, rest = line.partition("\n")
        return f"{head} [{pairs}]{newline}{rest}"


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    """Route all logging to a single stderr handler in ``log_format``."""
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format {log_format!r}; expected one of {LOG_FORMATS}")

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ContextTextFormatter())
    root.addHandler(handler)
    root.setLevel(level)
