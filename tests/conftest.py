"""Shared fixtures and in-memory doubles for the blueprint engine tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any

import pytest

from blueprint_engine.config import DEFAULT_RETRYABLE_STATUSES, Settings
from blueprint_engine.jobs.channel import LocalJobChannel
from blueprint_engine.jobs.models import JobRecord, can_advance, utc_timestamp
from blueprint_engine.storage.cache_repo import CacheRecord


@pytest.fixture
def anyio_backend():
  return "asyncio"


class InMemoryJobsRepo:
  """Minimal in-memory jobs repo that counts reads."""

  def __init__(self, *, fail_create: bool = False) -> None:
    self.records: dict[str, JobRecord] = {}
    self.fail_create = fail_create
    self.get_calls = 0

  async def create_job(self, record: JobRecord) -> None:
    if self.fail_create:
      raise ConnectionError("database unavailable")
    self.records[record.job_id] = record

  async def get_job(self, job_id: str) -> JobRecord | None:
    self.get_calls += 1
    return self.records.get(job_id)

  async def update_job(self, job_id: str, **kwargs: Any) -> JobRecord | None:
    record = self.records.get(job_id)
    if record is None:
      return None
    status = kwargs.get("status")
    if status is not None and not can_advance(record.status, status):
      return record

    # Merge updates onto the latest record to mimic persistence behavior.
    updates = {key: value for key, value in kwargs.items() if value is not None}
    self.records[job_id] = replace(record, **updates, updated_at=utc_timestamp())
    return self.records[job_id]


class InMemoryCacheRepo:
  def __init__(self) -> None:
    self.rows: dict[tuple[str, date], CacheRecord] = {}
    self.fail_get = False
    self.fail_upsert = False
    self.fail_delete = False
    self.deleted: list[tuple[str, date]] = []

  async def get(self, owner: str, generated_date: date) -> CacheRecord | None:
    if self.fail_get:
      raise ConnectionError("cache read failed")
    return self.rows.get((owner, generated_date))

  async def upsert(self, record: CacheRecord) -> None:
    if self.fail_upsert:
      raise ConnectionError("cache write failed")
    self.rows[(record.owner, record.generated_date)] = record

  async def delete(self, owner: str, generated_date: date) -> None:
    if self.fail_delete:
      raise ConnectionError("cache delete failed")
    self.deleted.append((owner, generated_date))
    self.rows.pop((owner, generated_date), None)


def make_job(job_id: str, *, status: str = "pending", result: Any = None, owner: str = "user-1") -> JobRecord:
  return JobRecord(job_id=job_id, owner=owner, kind="viral_blueprint", parameters={"topic": "X"}, status=status, created_at="2026-01-01T00:00:00Z", updated_at="2026-01-01T00:00:00Z", result=result)


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepo:
  return InMemoryJobsRepo()


@pytest.fixture
def cache_repo() -> InMemoryCacheRepo:
  return InMemoryCacheRepo()


@pytest.fixture
def channel() -> LocalJobChannel:
  return LocalJobChannel()


@pytest.fixture
def settings() -> Settings:
  return Settings(
    environment="test",
    debug=False,
    log_max_bytes=1024,
    log_backup_count=1,
    pg_dsn=None,
    pg_connect_timeout=5,
    workflow_webhook_url="https://workflow.test/webhook/viral-blueprint",
    provider_kind="chat_proxy",
    provider_base_url=None,
    provider_api_key=None,
    provider_model="grok-4-1-fast-reasoning",
    push_channel="local",
    job_deadline_seconds=60.0,
    progress_window_seconds=90.0,
    fast_timeout_ms=30000,
    standard_timeout_ms=60000,
    long_timeout_ms=120000,
    max_retries=2,
    base_delay_ms=750,
    retryable_statuses=DEFAULT_RETRYABLE_STATUSES,
    default_score=85,
  )


@pytest.fixture
def job_factory():
  return make_job
