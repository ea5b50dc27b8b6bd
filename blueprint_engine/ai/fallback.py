"""Ordered degrade chain: workflow job, secondary provider, deterministic template."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

from blueprint_engine.ai.normalizer import DEFAULT_SCORE, require_artifact
from blueprint_engine.ai.prompts import build_blueprint_messages
from blueprint_engine.ai.providers.base import Provider, ProviderError
from blueprint_engine.ai.templates import build_template_blueprint
from blueprint_engine.core.exceptions import BlueprintError, CreationError, JobTimeoutError, TriggerError
from blueprint_engine.jobs.submission import JobSubmissionClient
from blueprint_engine.jobs.tracker import TrackerScope
from blueprint_engine.schema.blueprint import BlueprintParameters, NormalizedArtifact

logger = logging.getLogger(__name__)

TierName = Literal["workflow", "provider", "template"]


class GenerationSuperseded(Exception):
  """Raised when the generation was torn down before a tier could deliver."""


@dataclass
class GenerationRequest:
  """One generation attempt flowing through the chain."""

  owner: str
  parameters: BlueprintParameters
  is_active: Callable[[], bool] = lambda: True
  job_id: str | None = None
  failures: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TierResult:
  """The normalized artifact and the tier that produced it."""

  tier: TierName
  artifact: NormalizedArtifact
  job_id: str | None = None
  failures: tuple[str, ...] = ()


@dataclass(frozen=True)
class TierEvent:
  tier: TierName
  owner: str
  job_id: str | None
  failures: tuple[str, ...]
  recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class TierRecorder(Protocol):
  """Observability sink for which tier served each response."""

  async def record(self, event: TierEvent) -> None:
    """Persist or emit the tier event."""


class LoggingTierRecorder(TierRecorder):
  async def record(self, event: TierEvent) -> None:
    logger.info("Blueprint served by %s tier for owner %s (job=%s, failures=%s)", event.tier, event.owner, event.job_id, ",".join(event.failures) or "none")


class GenerationTier(Protocol):
  name: TierName

  async def run(self, request: GenerationRequest) -> Any:
    """Return a raw response for the normalizer or raise on failure."""


class WorkflowTier(GenerationTier):
  """Tier 1: persist a job, trigger the workflow, resolve via push or safety-net read."""

  name: TierName = "workflow"

  def __init__(self, submission: JobSubmissionClient, scope: TrackerScope) -> None:
    self._submission = submission
    self._scope = scope

  async def run(self, request: GenerationRequest) -> Any:
    submitted = await self._submission.submit(request.owner, request.parameters.to_payload())
    job_id = submitted.job_id
    request.job_id = job_id
    tracker = await self._scope.track(job_id)

    # Whichever settles first: a failed trigger or the tracker itself.
    waiter = asyncio.ensure_future(tracker.wait())
    try:
      done, _ = await asyncio.wait({submitted.trigger, waiter}, return_when=asyncio.FIRST_COMPLETED)
      if waiter not in done and not submitted.trigger.result():
        raise TriggerError(job_id=job_id)
      outcome = await waiter
    finally:
      waiter.cancel()
      self._scope.release(job_id)

    if outcome.source == "cancelled":
      raise GenerationSuperseded(job_id)
    if not outcome.terminal:
      raise JobTimeoutError(job_id=job_id)
    if not outcome.completed:
      raise TriggerError("Workflow reported a failed job.", job_id=job_id)
    return outcome.record.result if outcome.record is not None else None


class ProviderTier(GenerationTier):
  """Tier 2: call the secondary provider directly with the same parameters."""

  name: TierName = "provider"

  def __init__(self, provider: Provider | None) -> None:
    self._provider = provider

  async def run(self, request: GenerationRequest) -> Any:
    if self._provider is None:
      raise ProviderError("No secondary provider configured")
    response = await self._provider.generate(build_blueprint_messages(request.parameters))
    return response.content


class TemplateTier(GenerationTier):
  """Tier 3: deterministic single-step blueprint; cannot fail on valid parameters."""

  name: TierName = "template"

  def __init__(self, *, score: int = DEFAULT_SCORE) -> None:
    self._score = score

  async def run(self, request: GenerationRequest) -> Any:
    return build_template_blueprint(request.parameters, score=self._score)


class FallbackChain:
  """
  Runs tiers in order until one yields a normalizable response.

  ``CreationError`` propagates unchanged. Every other failure, including a
  response the normalizer cannot read, moves on to the next tier. The tier
  that served the request is reported to the recorder in a detached task.
  """

  def __init__(self, tiers: Sequence[GenerationTier], *, recorder: TierRecorder | None = None, default_score: int = DEFAULT_SCORE) -> None:
    if not tiers:
      raise ValueError("FallbackChain requires at least one tier")
    self._tiers = tuple(tiers)
    self._recorder = recorder or LoggingTierRecorder()
    self._default_score = default_score
    self._recordings: set[asyncio.Task[None]] = set()

  async def run(self, request: GenerationRequest) -> TierResult:
    for tier in self._tiers:
      if not request.is_active():
        raise GenerationSuperseded(request.job_id)
      try:
        raw = await tier.run(request)
        artifact = require_artifact(raw, default_score=self._default_score, job_id=request.job_id)
      except (CreationError, GenerationSuperseded):
        raise
      except BlueprintError as exc:
        logger.warning("Tier %s failed (%s): %s", tier.name, type(exc).__name__, exc.message)
        request.failures.append(f"{tier.name}:{type(exc).__name__}")
        continue
      except Exception as exc:  # noqa: BLE001
        logger.warning("Tier %s failed (%s): %s", tier.name, type(exc).__name__, exc)
        request.failures.append(f"{tier.name}:{type(exc).__name__}")
        continue

      result = TierResult(tier=tier.name, artifact=artifact, job_id=request.job_id, failures=tuple(request.failures))
      self._schedule_record(TierEvent(tier=tier.name, owner=request.owner, job_id=request.job_id, failures=result.failures))
      return result

    raise BlueprintError("Every generation tier failed.", job_id=request.job_id)

  def _schedule_record(self, event: TierEvent) -> None:
    task = asyncio.get_running_loop().create_task(self._record(event))
    self._recordings.add(task)
    task.add_done_callback(self._recordings.discard)

  async def _record(self, event: TierEvent) -> None:
    try:
      await self._recorder.record(event)
    except Exception:  # noqa: BLE001
      logger.exception("Tier recorder failed for %s tier", event.tier)

  async def drain(self) -> None:
    """Wait for pending tier recordings; used on shutdown and in tests."""
    if self._recordings:
      await asyncio.gather(*self._recordings, return_exceptions=True)
