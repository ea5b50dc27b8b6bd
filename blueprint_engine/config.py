"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from blueprint_engine.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_RETRYABLE_STATUSES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class Settings:
  """Typed settings for the blueprint generation subsystem."""

  environment: str
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  workflow_webhook_url: str | None
  provider_kind: str
  provider_base_url: str | None
  provider_api_key: str | None
  provider_model: str
  push_channel: str
  job_deadline_seconds: float
  progress_window_seconds: float
  fast_timeout_ms: int
  standard_timeout_ms: int
  long_timeout_ms: int
  max_retries: int
  base_delay_ms: int
  retryable_statuses: frozenset[int]
  default_score: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _parse_status_set(raw: str | None) -> frozenset[int]:
  """Parse a comma separated list of HTTP status codes."""
  if not raw:
    return DEFAULT_RETRYABLE_STATUSES
  statuses = {int(item.strip()) for item in raw.split(",") if item.strip()}
  if not statuses:
    raise ValueError("BLUEPRINT_RETRYABLE_STATUSES must include at least one status code.")
  if any(status < 100 or status > 599 for status in statuses):
    raise ValueError("BLUEPRINT_RETRYABLE_STATUSES must only contain HTTP status codes.")
  return frozenset(statuses)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("BLUEPRINT_ENV", "development").lower()
  debug = _parse_bool(os.getenv("BLUEPRINT_DEBUG"))

  log_max_bytes = _positive_int("BLUEPRINT_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("BLUEPRINT_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("BLUEPRINT_LOG_BACKUP_COUNT must be zero or a positive integer.")

  provider_kind = (os.getenv("BLUEPRINT_PROVIDER") or "chat_proxy").strip().lower()
  if provider_kind not in {"chat_proxy", "openai"}:
    raise ValueError("BLUEPRINT_PROVIDER must be 'chat_proxy' or 'openai'.")

  push_channel = (os.getenv("BLUEPRINT_PUSH_CHANNEL") or "local").strip().lower()
  if push_channel not in {"local", "postgres"}:
    raise ValueError("BLUEPRINT_PUSH_CHANNEL must be 'local' or 'postgres'.")

  max_retries = int(os.getenv("BLUEPRINT_MAX_RETRIES", "2"))
  if max_retries < 0:
    raise ValueError("BLUEPRINT_MAX_RETRIES must be zero or a positive integer.")

  pg_dsn = os.getenv("BLUEPRINT_PG_DSN") or os.getenv("DATABASE_URL")
  if push_channel == "postgres" and not pg_dsn:
    raise ValueError("BLUEPRINT_PG_DSN must be set when the postgres push channel is enabled.")

  return Settings(
    environment=environment,
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=pg_dsn,
    pg_connect_timeout=_positive_int("BLUEPRINT_PG_CONNECT_TIMEOUT", "5"),
    workflow_webhook_url=_optional_str(os.getenv("BLUEPRINT_WORKFLOW_WEBHOOK_URL")),
    provider_kind=provider_kind,
    provider_base_url=_optional_str(os.getenv("BLUEPRINT_PROVIDER_BASE_URL")),
    provider_api_key=_optional_str(os.getenv("BLUEPRINT_PROVIDER_API_KEY")),
    provider_model=(os.getenv("BLUEPRINT_PROVIDER_MODEL") or "grok-4-1-fast-reasoning").strip(),
    push_channel=push_channel,
    job_deadline_seconds=_positive_float("BLUEPRINT_JOB_DEADLINE_SECONDS", "60"),
    progress_window_seconds=_positive_float("BLUEPRINT_PROGRESS_WINDOW_SECONDS", "90"),
    fast_timeout_ms=_positive_int("BLUEPRINT_FAST_TIMEOUT_MS", "30000"),
    standard_timeout_ms=_positive_int("BLUEPRINT_STANDARD_TIMEOUT_MS", "60000"),
    long_timeout_ms=_positive_int("BLUEPRINT_LONG_TIMEOUT_MS", "120000"),
    max_retries=max_retries,
    base_delay_ms=_positive_int("BLUEPRINT_BASE_DELAY_MS", "750"),
    retryable_statuses=_parse_status_set(os.getenv("BLUEPRINT_RETRYABLE_STATUSES")),
    default_score=_positive_int("BLUEPRINT_DEFAULT_SCORE", "85"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the rest of the runtime configuration."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("BLUEPRINT_DEBUG"))
  pg_connect_timeout = _positive_int("BLUEPRINT_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("BLUEPRINT_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
