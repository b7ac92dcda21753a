"""Metrics collection configuration.

All environment access happens in MetricsConfig.from_env(); collectors and
services receive the resulting struct explicitly.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


SOURCE_BACKEND_SQLITE = "sqlite"
SOURCE_BACKEND_SUPABASE = "supabase"

DEFAULT_SOURCE_TABLES = {
    "users": "profiles",
    "posts": "posts",
    "comments": "comments",
}


def redact_text(text: str, secrets: Sequence[Optional[str]]) -> str:
    """Replace every configured secret in text with [REDACTED]."""
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


def resolve_timezone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid METRICS_TIMEZONE '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from None


@dataclass
class MetricsConfig:
    """Connection and scheduling settings for metrics collection."""

    db_path: Path = Path("data/metrics.db")
    source_backend: str = SOURCE_BACKEND_SQLITE
    source_db_path: Path = Path("data/community.db")
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    source_tables: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_TABLES)
    )
    redis_url: Optional[str] = None
    timezone: str = "UTC"
    progress_every: int = 10
    stale_run_minutes: int = 60
    default_backfill_days: int = 30
    catchup_days: int = 3
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MetricsConfig":
        """Build configuration from environment variables."""
        env = os.environ if env is None else env

        source_tables = {
            "users": env.get("METRICS_USERS_TABLE") or DEFAULT_SOURCE_TABLES["users"],
            "posts": env.get("METRICS_POSTS_TABLE") or DEFAULT_SOURCE_TABLES["posts"],
            "comments": env.get("METRICS_COMMENTS_TABLE")
            or DEFAULT_SOURCE_TABLES["comments"],
        }

        return cls(
            db_path=Path(env.get("METRICS_DB_PATH", "data/metrics.db")),
            source_backend=env.get("METRICS_SOURCE_BACKEND", SOURCE_BACKEND_SQLITE).lower(),
            source_db_path=Path(env.get("METRICS_SOURCE_DB_PATH", "data/community.db")),
            supabase_url=env.get("SUPABASE_URL") or None,
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or None,
            source_tables=source_tables,
            redis_url=env.get("REDIS_URL") or None,
            timezone=env.get("METRICS_TIMEZONE", "UTC"),
            progress_every=_int_env(env, "METRICS_PROGRESS_EVERY", 10),
            stale_run_minutes=_int_env(env, "METRICS_STALE_RUN_MINUTES", 60),
            default_backfill_days=_int_env(env, "METRICS_DEFAULT_BACKFILL_DAYS", 30),
            catchup_days=_int_env(env, "METRICS_BACKFILL_DAYS", 3),
            api_key=env.get("PULSE_API_KEY") or None,
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return resolve_timezone(self.timezone)

    @property
    def secrets(self) -> list[Optional[str]]:
        """Values that must never appear in logs."""
        return [self.supabase_service_role_key, self.api_key]

    def validate(self) -> None:
        """Check that the configuration can connect to its sources.

        Raises:
            ConfigurationError: If credentials are missing or settings invalid
        """
        if self.source_backend == SOURCE_BACKEND_SUPABASE:
            missing = []
            if not self.supabase_url:
                missing.append("SUPABASE_URL")
            if not self.supabase_service_role_key:
                missing.append("SUPABASE_SERVICE_ROLE_KEY")
            if missing:
                raise ConfigurationError(
                    "Missing required environment variables: " + ", ".join(missing)
                )
        elif self.source_backend == SOURCE_BACKEND_SQLITE:
            if not Path(self.source_db_path).exists():
                raise ConfigurationError(
                    f"Source database not found: {self.source_db_path}. "
                    "Set METRICS_SOURCE_DB_PATH to the community database."
                )
        else:
            raise ConfigurationError(
                f"Unknown METRICS_SOURCE_BACKEND '{self.source_backend}' "
                f"(expected '{SOURCE_BACKEND_SQLITE}' or '{SOURCE_BACKEND_SUPABASE}')"
            )

        for name in ("users", "posts", "comments"):
            if not self.source_tables.get(name):
                raise ConfigurationError(f"No source table configured for '{name}'")

        for attr in (
            "progress_every",
            "stale_run_minutes",
            "default_backfill_days",
            "catchup_days",
        ):
            if getattr(self, attr) <= 0:
                raise ConfigurationError(f"{attr} must be positive")
