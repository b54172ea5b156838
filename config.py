from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    availability_api_key: str
    admin_api_key: str
    hold_duration_minutes: int
    hold_sweep_interval_minutes: int
    assignment_timeout_seconds: float
    batch_assignment_timeout_seconds: float
    log_level: str


def _clean(value: str) -> str:
    return value.strip().strip('"').strip("'")


def _get_required_env(name: str) -> str:
    value = _clean(os.getenv(name, ""))
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_int_env(name: str, default: int) -> int:
    raw = _clean(os.getenv(name, ""))
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc


def _get_float_env(name: str, default: float) -> float:
    raw = _clean(os.getenv(name, ""))
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from exc


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Facility Availability API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        availability_api_key=_get_required_env("AVAILABILITY_API_KEY"),
        admin_api_key=_get_required_env("ADMIN_API_KEY"),
        hold_duration_minutes=_get_int_env("HOLD_DURATION_MINUTES", 10),
        hold_sweep_interval_minutes=_get_int_env("HOLD_SWEEP_INTERVAL_MINUTES", 10),
        assignment_timeout_seconds=_get_float_env("ASSIGNMENT_TIMEOUT_SECONDS", 10.0),
        batch_assignment_timeout_seconds=_get_float_env("BATCH_ASSIGNMENT_TIMEOUT_SECONDS", 30.0),
        log_level=_clean(os.getenv("LOG_LEVEL", "INFO")).upper() or "INFO",
    )
