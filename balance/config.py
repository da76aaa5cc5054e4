from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./balance.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_HORIZON_DAYS = 7
DEFAULT_UPCOMING_LIMIT = 3
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    upcoming_horizon_days: int = DEFAULT_HORIZON_DAYS
    upcoming_limit: int = DEFAULT_UPCOMING_LIMIT
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            frontend_origin=env.get("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
            upcoming_horizon_days=_non_negative_int(
                env, "UPCOMING_HORIZON_DAYS", DEFAULT_HORIZON_DAYS
            ),
            upcoming_limit=_non_negative_int(env, "UPCOMING_LIMIT", DEFAULT_UPCOMING_LIMIT),
            log_level=_log_level(env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL)),
        )


def _non_negative_int(env: Mapping[str, str], name: str, fallback: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r, expected an integer; using %s.", name, raw, fallback)
        return fallback
    if value < 0:
        logger.warning("Ignoring negative %s=%s; using %s.", name, value, fallback)
        return fallback
    return value


def _log_level(value: str) -> str:
    normalized = value.strip().upper()
    if not isinstance(logging.getLevelName(normalized), int):
        logger.warning("Unknown LOG_LEVEL %r; using %s.", value, DEFAULT_LOG_LEVEL)
        return DEFAULT_LOG_LEVEL
    return normalized
