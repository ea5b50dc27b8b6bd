"""Job submission: persist the job row, then fire the workflow trigger."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
import msgspec

from blueprint_engine.config import Settings
from blueprint_engine.core.exceptions import CreationError, TriggerError
from blueprint_engine.jobs.models import JobKind, JobRecord, utc_timestamp
from blueprint_engine.storage.jobs_repo import JobsRepository
from blueprint_engine.utils.http_retry import RequestExecutor, RequestSpec
from blueprint_engine.utils.ids import generate_job_id, is_uuid

logger = logging.getLogger(__name__)


@dataclass
class SubmittedJob:
  """A persisted job and its detached trigger dispatch."""

  job_id: str
  trigger: asyncio.Task[bool]

  async def trigger_succeeded(self) -> bool:
    """Wait for the trigger's HTTP outcome; the response body is never consumed."""
    return await asyncio.shield(self.trigger)


async def _reports_rejection(response: httpx.Response) -> bool:
  """Return True when a 2xx body explicitly says ``{"success": false}``."""
  content_type = response.headers.get("content-type", "")
  if "json" not in content_type:
    return False
  try:
    body = msgspec.json.decode(await response.aread())
  except (msgspec.DecodeError, httpx.HTTPError):
    return False
  return isinstance(body, dict) and body.get("success") is False


class JobSubmissionClient:
  """Creates job rows and dispatches the external workflow trigger."""

  def __init__(self, repo: JobsRepository, executor: RequestExecutor, *, webhook_url: str | None, timeout_ms: int | None = None, headers: dict[str, str] | None = None) -> None:
    self._repo = repo
    self._executor = executor
    self._webhook_url = webhook_url
    self._timeout_ms = timeout_ms
    self._headers = headers or {"content-type": "application/json"}
    self._in_flight: set[asyncio.Task[bool]] = set()

  @classmethod
  def from_settings(cls, settings: Settings, repo: JobsRepository, executor: RequestExecutor) -> JobSubmissionClient:
    return cls(repo, executor, webhook_url=settings.workflow_webhook_url, timeout_ms=settings.standard_timeout_ms)

  async def submit(self, owner: str, parameters: dict[str, Any], *, kind: JobKind = "viral_blueprint") -> SubmittedJob:
    """
    Create a pending job row and fire the trigger without awaiting it.

    Raises:
      CreationError: when the row could not be persisted. No trigger is attempted.
    """
    job_id = generate_job_id()
    timestamp = utc_timestamp()
    record = JobRecord(job_id=job_id, owner=owner, kind=kind, parameters=dict(parameters), status="pending", created_at=timestamp, updated_at=timestamp)

    try:
      await self._repo.create_job(record)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to create job row for owner %s: %s", owner, exc)
      raise CreationError(job_id=job_id) from exc

    logger.info("Created job %s (%s) for owner %s", job_id, kind, owner)
    task = asyncio.create_task(self._dispatch(job_id, record.parameters), name=f"trigger:{job_id}")
    # Hold a strong reference until the dispatch settles.
    self._in_flight.add(task)
    task.add_done_callback(self._in_flight.discard)
    return SubmittedJob(job_id=job_id, trigger=task)

  async def _dispatch(self, job_id: str, parameters: dict[str, Any]) -> bool:
    try:
      await self.trigger(job_id, parameters)
    except TriggerError as exc:
      logger.warning("Trigger failed for job %s: %s", job_id, exc.message)
      return False
    return True

  async def trigger(self, job_id: str, parameters: dict[str, Any]) -> None:
    """
    Post ``{job_id, ...parameters}`` to the workflow webhook.

    Only the status line (and an explicit ``success: false`` flag on 2xx) is
    inspected; the rest of the body is discarded.

    Raises:
      TriggerError: when the call fails after retries or is rejected.
    """
    if not is_uuid(job_id):
      raise TriggerError(f"Job id {job_id!r} is not a UUID.", job_id=job_id)
    if not self._webhook_url:
      raise TriggerError("Workflow webhook URL is not configured.", job_id=job_id)

    spec = RequestSpec(method="POST", headers=self._headers, json={"job_id": job_id, **parameters})
    try:
      response = await self._executor.execute(self._webhook_url, spec, timeout_ms=self._timeout_ms, stream=True)
    except (httpx.HTTPError, TimeoutError) as exc:
      raise TriggerError(f"Workflow trigger unreachable: {type(exc).__name__}", job_id=job_id) from exc

    try:
      if not response.is_success:
        raise TriggerError(f"Workflow trigger returned {response.status_code}", job_id=job_id)
      if await _reports_rejection(response):
        raise TriggerError("Workflow trigger rejected the request", job_id=job_id)
    finally:
      await response.aclose()
    logger.debug("Trigger accepted for job %s", job_id)
