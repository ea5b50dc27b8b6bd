"""Storage interfaces for generation jobs."""

from __future__ import annotations

from typing import Any, Protocol

from blueprint_engine.jobs.models import JobRecord, JobStatus


class JobsRepository(Protocol):
  """Repository contract for job persistence."""

  async def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def update_job(self, job_id: str, *, status: JobStatus | None = None, result: dict[str, Any] | list[Any] | str | None = None, error: dict[str, Any] | None = None) -> JobRecord | None:
    """Apply a forward-only status update to a job."""
