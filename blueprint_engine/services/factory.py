"""Wiring of the Postgres-backed blueprint service for production use."""

from __future__ import annotations

from blueprint_engine.ai.fallback import TierRecorder
from blueprint_engine.config import Settings
from blueprint_engine.jobs.channel import JobChannel
from blueprint_engine.jobs.postgres_channel import PostgresJobChannel
from blueprint_engine.services.blueprints import BlueprintService
from blueprint_engine.services.daily_cache import DailyCacheGate, TimezoneResolver
from blueprint_engine.storage.jobs_repo import JobsRepository
from blueprint_engine.storage.postgres_cache_repo import PostgresDailyCacheRepository
from blueprint_engine.storage.postgres_jobs_repo import PostgresJobsRepository
from blueprint_engine.utils.http_retry import RequestExecutor, RetryPolicy


def get_job_channel(settings: Settings) -> JobChannel | None:
  """Return the configured push channel; None selects the in-process channel."""
  if settings.push_channel == "postgres":
    return PostgresJobChannel()
  return None


def build_blueprint_service(settings: Settings, *, jobs_repo: JobsRepository | None = None, timezone_for: TimezoneResolver | None = None, recorder: TierRecorder | None = None) -> BlueprintService:
  """Factory wiring the Postgres-backed repositories into a blueprint service."""
  executor = RequestExecutor(policy=RetryPolicy.from_settings(settings))
  cache = DailyCacheGate(PostgresDailyCacheRepository(), timezone_for=timezone_for)
  return BlueprintService.from_settings(settings, jobs_repo=jobs_repo or PostgresJobsRepository(), channel=get_job_channel(settings), executor=executor, cache=cache, recorder=recorder)
