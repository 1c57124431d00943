"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    app_name: str = "Court Slot Allocation Service"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = Path("data/courtslots.db")
    store_busy_timeout_seconds: float = 10.0

    priority_lookback_days: int = 28
    priority_recent_days: int = 7

    default_display_name: str = "User"
    user_id_header: str = "X-User-Id"
    seed_demo_data: bool = False


def validate_settings(settings: Settings) -> None:
    if settings.store_busy_timeout_seconds <= 0:
        raise ValueError("store_busy_timeout_seconds must be > 0")
    if settings.priority_lookback_days <= 0:
        raise ValueError("priority_lookback_days must be > 0")
    if settings.priority_recent_days <= 0:
        raise ValueError("priority_recent_days must be > 0")
    if settings.priority_recent_days > settings.priority_lookback_days:
        raise ValueError("priority_recent_days must not exceed priority_lookback_days")
    if not settings.user_id_header.strip():
        raise ValueError("user_id_header must be non-empty")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from the environment once per process."""
    defaults = Settings()
    settings = Settings(
        app_name=os.getenv("APP_NAME", defaults.app_name),
        app_version=os.getenv("APP_VERSION", defaults.app_version),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        database_path=Path(os.getenv("DATABASE_PATH", str(defaults.database_path))),
        store_busy_timeout_seconds=float(
            os.getenv("STORE_BUSY_TIMEOUT_SECONDS", defaults.store_busy_timeout_seconds)
        ),
        priority_lookback_days=int(
            os.getenv("PRIORITY_LOOKBACK_DAYS", defaults.priority_lookback_days)
        ),
        priority_recent_days=int(
            os.getenv("PRIORITY_RECENT_DAYS", defaults.priority_recent_days)
        ),
        default_display_name=os.getenv("DEFAULT_DISPLAY_NAME", defaults.default_display_name),
        user_id_header=os.getenv("USER_ID_HEADER", defaults.user_id_header),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", defaults.seed_demo_data),
    )
    validate_settings(settings)
    return settings
