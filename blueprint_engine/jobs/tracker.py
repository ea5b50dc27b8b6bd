"""Job resolution via push notification with a single deadline safety-net read."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from blueprint_engine.config import Settings
from blueprint_engine.jobs.channel import JobChannel, Subscription
from blueprint_engine.jobs.models import JobRecord, JobStatusEvent
from blueprint_engine.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

ResolutionSource = Literal["push", "poll", "timed_out", "cancelled"]

# Cosmetic progress never reaches 100 before the job actually resolves.
PROGRESS_CEILING = 95


@dataclass(frozen=True)
class TrackerOutcome:
  """How (and whether) a tracked job resolved."""

  job_id: str
  source: ResolutionSource
  record: JobRecord | None = None

  @property
  def terminal(self) -> bool:
    return self.record is not None and self.record.terminal

  @property
  def completed(self) -> bool:
    return self.record is not None and self.record.status == "completed"


class JobStatusTracker:
  """
  First-settled-wins resolution of one job id.

  A push subscription and one deadline timer race. A terminal push event
  settles the tracker and cancels the timer. If the timer fires first, the
  job row is read exactly once; the outcome is ``poll`` when that read is
  terminal and ``timed_out`` otherwise. Anything arriving after the tracker
  has settled is ignored.
  """

  def __init__(self, job_id: str, repo: JobsRepository, channel: JobChannel, *, deadline_seconds: float = 60.0, progress_window_seconds: float = 90.0, clock: Callable[[], float] = time.monotonic) -> None:
    self.job_id = job_id
    self._repo = repo
    self._channel = channel
    self._deadline_seconds = deadline_seconds
    self._progress_window = progress_window_seconds
    self._clock = clock
    self._future: asyncio.Future[TrackerOutcome] | None = None
    self._subscription: Subscription | None = None
    self._timer: asyncio.TimerHandle | None = None
    self._poll_task: asyncio.Task[None] | None = None
    self._started_at: float | None = None
    self._last_progress = 0
    self._closed = False
    self.reads_issued = 0

  @property
  def settled(self) -> bool:
    return self._future is not None and self._future.done()

  @property
  def closed(self) -> bool:
    return self._closed

  @property
  def progress(self) -> int:
    """Monotonic cosmetic progress; 100 only after resolution."""
    if self.settled:
      return 100
    if self._started_at is None:
      return 0
    elapsed = max(self._clock() - self._started_at, 0.0)
    ramp = int(PROGRESS_CEILING * min(elapsed / self._progress_window, 1.0))
    self._last_progress = max(self._last_progress, min(ramp, PROGRESS_CEILING))
    return self._last_progress

  async def start(self) -> None:
    """Subscribe to the job's push channel and arm the deadline timer."""
    if self._future is not None:
      raise RuntimeError(f"Tracker for job {self.job_id} already started")
    loop = asyncio.get_running_loop()
    self._future = loop.create_future()
    subscription = await self._channel.subscribe(self.job_id, self._on_event)

    # Closed while the subscribe call was suspended.
    if self._closed:
      subscription.unsubscribe()
      return

    self._subscription = subscription
    self._started_at = self._clock()
    self._timer = loop.call_later(self._deadline_seconds, self._on_deadline)
    logger.debug("Tracking job %s with a %.0fs deadline", self.job_id, self._deadline_seconds)

  async def wait(self) -> TrackerOutcome:
    """Wait for the first source to settle the job."""
    if self._future is None:
      raise RuntimeError(f"Tracker for job {self.job_id} was never started")
    return await asyncio.shield(self._future)

  def close(self) -> None:
    """Synchronously unsubscribe and clear the timer; pending waiters get a ``cancelled`` outcome."""
    if self._closed:
      return
    self._closed = True
    self._teardown()
    if self._poll_task is not None and not self._poll_task.done():
      self._poll_task.cancel()
    if self._future is not None and not self._future.done():
      self._future.set_result(TrackerOutcome(job_id=self.job_id, source="cancelled"))

  async def __aenter__(self) -> JobStatusTracker:
    await self.start()
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    self.close()

  def _teardown(self) -> None:
    if self._timer is not None:
      self._timer.cancel()
      self._timer = None
    if self._subscription is not None:
      self._subscription.unsubscribe()
      self._subscription = None

  def _settle(self, outcome: TrackerOutcome) -> None:
    if self._future is None or self._future.done():
      logger.debug("Ignoring %s result for already settled job %s", outcome.source, self.job_id)
      return
    self._future.set_result(outcome)
    self._teardown()
    logger.info("Job %s resolved via %s", self.job_id, outcome.source)

  def _on_event(self, event: JobStatusEvent) -> None:
    if self._closed or event.job_id != self.job_id:
      return
    if not event.terminal:
      logger.debug("Job %s moved to %s", self.job_id, event.record.status)
      return
    self._settle(TrackerOutcome(job_id=self.job_id, source="push", record=event.record))

  def _on_deadline(self) -> None:
    self._timer = None
    if self.settled or self._closed:
      return
    # The push channel stays open while the single safety-net read is in flight.
    self._poll_task = asyncio.get_running_loop().create_task(self._safety_net_read(), name=f"safety-net:{self.job_id}")

  async def _safety_net_read(self) -> None:
    self.reads_issued += 1
    try:
      record = await self._repo.get_job(self.job_id)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Safety-net read failed for job %s: %s", self.job_id, exc)
      record = None

    if record is not None and record.terminal:
      self._settle(TrackerOutcome(job_id=self.job_id, source="poll", record=record))
      return
    logger.warning("Job %s not terminal after %.0fs deadline (status=%s)", self.job_id, self._deadline_seconds, record.status if record else None)
    self._settle(TrackerOutcome(job_id=self.job_id, source="timed_out", record=record))


class TrackerScope:
  """
  Owns the trackers started from one consumer, keyed by job id.

  Starting a job with ``supersede=True`` tears down every other tracker in
  the scope. Closing the scope tears down everything; late results can be
  checked against ``owns()`` and discarded.
  """

  def __init__(self, repo: JobsRepository, channel: JobChannel, *, deadline_seconds: float = 60.0, progress_window_seconds: float = 90.0, clock: Callable[[], float] = time.monotonic) -> None:
    self._repo = repo
    self._channel = channel
    self._deadline_seconds = deadline_seconds
    self._progress_window = progress_window_seconds
    self._clock = clock
    self._trackers: dict[str, JobStatusTracker] = {}
    self._owned: set[str] = set()
    self._closed = False

  @classmethod
  def from_settings(cls, settings: Settings, repo: JobsRepository, channel: JobChannel) -> TrackerScope:
    return cls(repo, channel, deadline_seconds=settings.job_deadline_seconds, progress_window_seconds=settings.progress_window_seconds)

  @property
  def closed(self) -> bool:
    return self._closed

  def claim(self, job_id: str, *, supersede: bool = True) -> None:
    """Mark ``job_id`` as owned by this scope, optionally tearing down the others."""
    if self._closed:
      raise RuntimeError("Tracker scope is closed")
    if supersede:
      for other_id in list(self._owned):
        if other_id != job_id:
          logger.info("Job %s superseded by %s", other_id, job_id)
          self.finish(other_id)
    self._owned.add(job_id)

  async def track(self, job_id: str, *, supersede: bool = True) -> JobStatusTracker:
    """Claim ``job_id`` and start a tracker for it."""
    self.claim(job_id, supersede=supersede)
    existing = self._trackers.get(job_id)
    if existing is not None and not existing.closed:
      return existing
    tracker = JobStatusTracker(job_id, self._repo, self._channel, deadline_seconds=self._deadline_seconds, progress_window_seconds=self._progress_window, clock=self._clock)
    self._trackers[job_id] = tracker
    await tracker.start()
    return tracker

  def tracker(self, job_id: str) -> JobStatusTracker | None:
    return self._trackers.get(job_id)

  def owns(self, job_id: str) -> bool:
    return not self._closed and job_id in self._owned

  def release(self, job_id: str) -> None:
    """Tear down the tracker for ``job_id`` while keeping ownership of its result."""
    tracker = self._trackers.pop(job_id, None)
    if tracker is not None:
      tracker.close()

  def finish(self, job_id: str) -> None:
    """Tear down the tracker for ``job_id`` and give up its result."""
    self.release(job_id)
    self._owned.discard(job_id)

  def reset(self) -> None:
    """Give up every owned job while keeping the scope usable."""
    for job_id in list(self._owned | set(self._trackers)):
      self.finish(job_id)

  def close(self) -> None:
    """Tear down every tracker in the scope."""
    self._closed = True
    for job_id in list(self._trackers):
      self.release(job_id)
    self._owned.clear()

  def __len__(self) -> int:
    return len(self._trackers)
