# src/contestrank/config.py

"""Environment-driven configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from contestrank.exceptions import ConfigurationError
from contestrank.rating.glicko2_engine import Glicko2Params


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "not a number") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "not an integer") from None


@dataclass(frozen=True)
class SchedulerSettings:
    """When the monthly recompute runs (UTC)."""

    enabled: bool = False
    run_day: int = 1
    run_hour: int = 2
    check_interval_seconds: int = 3600


@dataclass(frozen=True)
class Settings:
    """Process-wide settings loaded once from the environment."""

    database_url: str = "sqlite+aiosqlite:///./contestrank.db"
    db_echo: bool = False
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_recycle: int = 3600
    log_level: str = "INFO"
    glicko2: Glicko2Params = field(default_factory=Glicko2Params)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)


def _load_glicko2_params() -> Glicko2Params:
    defaults = Glicko2Params()
    params = Glicko2Params(
        default_rating=_env_float("RATING_DEFAULT_RATING", defaults.default_rating),
        default_rd=_env_float("RATING_DEFAULT_RD", defaults.default_rd),
        default_vol=_env_float("RATING_DEFAULT_VOL", defaults.default_vol),
        tau=_env_float("RATING_TAU", defaults.tau),
    )
    for name, value in (
        ("RATING_DEFAULT_RD", params.default_rd),
        ("RATING_DEFAULT_VOL", params.default_vol),
        ("RATING_TAU", params.tau),
    ):
        if not value > 0:
            raise ConfigurationError(name, value, "must be positive")
    return params


def _load_scheduler_settings() -> SchedulerSettings:
    settings = SchedulerSettings(
        enabled=_env_bool("RATINGS_SCHEDULER_ENABLED", "false"),
        run_day=_env_int("RATINGS_SCHEDULER_RUN_DAY", 1),
        run_hour=_env_int("RATINGS_SCHEDULER_RUN_HOUR", 2),
        check_interval_seconds=_env_int("RATINGS_SCHEDULER_CHECK_INTERVAL", 3600),
    )
    if not 1 <= settings.run_day <= 28:
        raise ConfigurationError(
            "RATINGS_SCHEDULER_RUN_DAY", settings.run_day, "must be within 1..28"
        )
    if not 0 <= settings.run_hour <= 23:
        raise ConfigurationError(
            "RATINGS_SCHEDULER_RUN_HOUR", settings.run_hour, "must be within 0..23"
        )
    if settings.check_interval_seconds <= 0:
        raise ConfigurationError(
            "RATINGS_SCHEDULER_CHECK_INTERVAL",
            settings.check_interval_seconds,
            "must be positive",
        )
    return settings


def load_settings() -> Settings:
    """Build a Settings object from environment variables.

    Raises:
        ConfigurationError: If any variable holds an unusable value.
    """
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./contestrank.db"),
        db_echo=_env_bool("DB_ECHO", "false"),
        db_pool_size=_env_int("DB_POOL_SIZE", 20),
        db_max_overflow=_env_int("DB_MAX_OVERFLOW", 10),
        db_pool_recycle=_env_int("DB_POOL_RECYCLE", 3600),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        glicko2=_load_glicko2_params(),
        scheduler=_load_scheduler_settings(),
    )


def configure_logging(level: str) -> None:
    """Apply the configured level to the package loggers."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("contestrank").setLevel(level)


settings = load_settings()
