import os
from dataclasses import dataclass


def _positive_float(name: str, default: str) -> float:
    value = float(os.environ.get(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _positive_int(name: str, default: str) -> int:
    value = int(os.environ.get(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    store_timeout_seconds: float = 5.0
    max_write_retries: int = 3
    recalc_concurrency: int = 4
    default_bodyweight_kg: float = 80.0
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> "Config":
        retries = int(os.environ.get("LIFTLOG_MAX_WRITE_RETRIES", "3"))
        if retries < 0:
            raise ValueError(f"LIFTLOG_MAX_WRITE_RETRIES must not be negative, got {retries}")

        return cls(
            database_url=os.environ.get("DATABASE_URL", "").strip() or None,
            store_timeout_seconds=_positive_float("LIFTLOG_STORE_TIMEOUT", "5.0"),
            max_write_retries=retries,
            recalc_concurrency=_positive_int("LIFTLOG_RECALC_CONCURRENCY", "4"),
            default_bodyweight_kg=_positive_float("LIFTLOG_DEFAULT_BODYWEIGHT_KG", "80.0"),
            log_format=os.environ.get("LIFTLOG_LOG_FORMAT", "json"),
        )

    def require_database_url(self) -> str:
        if not self.database_url:
            raise RuntimeError("DATABASE_URL must be set")
        return self.database_url
