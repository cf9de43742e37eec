"""
Runtime settings, read from the environment once at import.

Defaults:
- DATABASE_URL: sqlite:///./data/app.db
- PURGE_RUN_AT: 00:00 (UTC, once daily)
"""
from __future__ import annotations

import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        v = int(raw)
    except ValueError:
        return None
    return v if v > 0 else None


APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/app.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DB_TIMEOUT_SECONDS = _env_int("DB_TIMEOUT_SECONDS", 30)

SCHEMA_CACHE_TTL_SECONDS = _env_int("SCHEMA_CACHE_TTL_SECONDS", 300)

PURGE_ENABLED = _env_bool("PURGE_ENABLED", True)
PURGE_RUN_AT = os.getenv("PURGE_RUN_AT", "00:00")
PURGE_INTERVAL_SECONDS = _env_optional_int("PURGE_INTERVAL_SECONDS")
PURGE_LOCK_TTL_SECONDS = _env_int("PURGE_LOCK_TTL_SECONDS", 3600)
