"""Per-job push channel contracts and the in-process implementation."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol

from blueprint_engine.jobs.models import JobRecord, JobStatus, JobStatusEvent
from blueprint_engine.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

JobEventCallback = Callable[[JobStatusEvent], None]


class Subscription(Protocol):
  """Handle for a live job subscription."""

  def unsubscribe(self) -> None:
    """Stop delivery synchronously; safe to call more than once."""


class JobChannel(Protocol):
  """Push channel delivering row-level updates for one job id per subscription."""

  async def subscribe(self, job_id: str, callback: JobEventCallback) -> Subscription:
    """Start delivering updates for ``job_id`` to ``callback``."""


class _Subscription:
  def __init__(self, registry: CallbackRegistry, job_id: str, callback: JobEventCallback) -> None:
    self._registry = registry
    self._job_id = job_id
    self._callback = callback
    self._active = True

  @property
  def active(self) -> bool:
    return self._active

  def unsubscribe(self) -> None:
    if not self._active:
      return
    self._active = False
    self._registry.remove(self._job_id, self._callback)


class CallbackRegistry:
  """Callbacks keyed by job id so one job's events never reach another job's listener."""

  def __init__(self) -> None:
    self._callbacks: dict[str, list[JobEventCallback]] = defaultdict(list)

  def add(self, job_id: str, callback: JobEventCallback) -> _Subscription:
    self._callbacks[job_id].append(callback)
    return _Subscription(self, job_id, callback)

  def remove(self, job_id: str, callback: JobEventCallback) -> None:
    callbacks = self._callbacks.get(job_id)
    if not callbacks:
      return
    if callback in callbacks:
      callbacks.remove(callback)
    if not callbacks:
      del self._callbacks[job_id]

  def listener_count(self, job_id: str | None = None) -> int:
    if job_id is not None:
      return len(self._callbacks.get(job_id, []))
    return sum(len(callbacks) for callbacks in self._callbacks.values())

  def dispatch(self, event: JobStatusEvent) -> None:
    # Copy so callbacks can unsubscribe while we iterate.
    for callback in list(self._callbacks.get(event.job_id, [])):
      try:
        callback(event)
      except Exception:  # noqa: BLE001
        logger.exception("Job event callback failed for job %s", event.job_id)


class LocalJobChannel(JobChannel):
  """In-process channel for local development and tests."""

  def __init__(self) -> None:
    self._registry = CallbackRegistry()

  async def subscribe(self, job_id: str, callback: JobEventCallback) -> Subscription:
    return self._registry.add(job_id, callback)

  def publish(self, record: JobRecord) -> None:
    """Deliver the full updated row to listeners of its job id."""
    self._registry.dispatch(JobStatusEvent(job_id=record.job_id, record=record))

  def listener_count(self, job_id: str | None = None) -> int:
    return self._registry.listener_count(job_id)


class NotifyingJobsRepository(JobsRepository):
  """Repository wrapper that publishes every successful update to a local channel."""

  def __init__(self, inner: JobsRepository, channel: LocalJobChannel) -> None:
    self._inner = inner
    self._channel = channel

  async def create_job(self, record: JobRecord) -> None:
    await self._inner.create_job(record)

  async def get_job(self, job_id: str) -> JobRecord | None:
    return await self._inner.get_job(job_id)

  async def update_job(self, job_id: str, *, status: JobStatus | None = None, result: dict[str, Any] | list[Any] | str | None = None, error: dict[str, Any] | None = None) -> JobRecord | None:
    record = await self._inner.update_job(job_id, status=status, result=result, error=error)
    if record is not None:
      self._channel.publish(record)
    return record
