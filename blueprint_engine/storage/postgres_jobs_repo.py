"""Postgres-backed repository for generation jobs using SQLAlchemy."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blueprint_engine.core.database import require_session_factory
from blueprint_engine.jobs.models import JobRecord, JobStatus, can_advance, utc_timestamp
from blueprint_engine.schema.jobs import Job
from blueprint_engine.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


class PostgresJobsRepository(JobsRepository):
  """Persist job rows to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or require_session_factory()

  async def create_job(self, record: JobRecord) -> None:
    async with self._session_factory() as session:
      job = Job(
        job_id=record.job_id,
        owner=record.owner,
        kind=record.kind,
        parameters=record.parameters,
        status=record.status,
        result=record.result,
        error=record.error,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      session.add(job)
      await session.commit()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def update_job(self, job_id: str, *, status: JobStatus | None = None, result: dict[str, Any] | list[Any] | str | None = None, error: dict[str, Any] | None = None) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id, with_for_update=True)
      if row is None:
        return None
      # Refuse backward transitions so a late writer cannot resurrect a finished job.
      if status is not None and not can_advance(row.status, status):
        logger.warning("Ignoring backward status transition for job %s: %s -> %s", job_id, row.status, status)
        return self._model_to_record(row)
      if status is not None:
        row.status = status
      if result is not None:
        row.result = result
      if error is not None:
        row.error = error
      row.updated_at = utc_timestamp()
      await session.commit()
      return self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: Job) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      owner=row.owner,
      kind=row.kind,  # type: ignore[arg-type]
      parameters=dict(row.parameters or {}),
      status=row.status,  # type: ignore[arg-type]
      created_at=row.created_at,
      updated_at=row.updated_at,
      result=row.result,
      error=row.error,
    )
