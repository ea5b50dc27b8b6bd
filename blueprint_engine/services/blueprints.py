"""Blueprint generation entry point consumed by UI controllers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from blueprint_engine.ai.fallback import FallbackChain, GenerationRequest, GenerationSuperseded, ProviderTier, TemplateTier, TierRecorder, TierResult, WorkflowTier
from blueprint_engine.ai.providers.factory import get_provider
from blueprint_engine.config import Settings, get_settings
from blueprint_engine.core.exceptions import CacheError, CreationError
from blueprint_engine.jobs.channel import JobChannel, LocalJobChannel, NotifyingJobsRepository
from blueprint_engine.jobs.submission import JobSubmissionClient
from blueprint_engine.jobs.tracker import TrackerScope
from blueprint_engine.schema.blueprint import BlueprintParameters, NormalizedArtifact
from blueprint_engine.services.daily_cache import DailyCacheGate
from blueprint_engine.storage.jobs_repo import JobsRepository
from blueprint_engine.utils.http_retry import RequestExecutor, RetryPolicy

logger = logging.getLogger(__name__)


def parse_parameters(parameters: BlueprintParameters | Mapping[str, Any]) -> BlueprintParameters:
  """Validate raw input; invalid input means no job can be created."""
  if isinstance(parameters, BlueprintParameters):
    return parameters
  try:
    return BlueprintParameters.model_validate(dict(parameters))
  except ValidationError as exc:
    raise CreationError("Please provide a topic and a supported platform.") from exc


class BlueprintService:
  """
  Runs the fallback chain for one consumer.

  Each call to ``generate`` supersedes the previous one: its trackers are
  torn down and any result it still produces is discarded. ``close`` tears
  down everything, after which results are discarded too. Only
  ``CreationError`` escapes.
  """

  def __init__(self, chain: FallbackChain, scope: TrackerScope, *, cache: DailyCacheGate | None = None) -> None:
    self._chain = chain
    self._scope = scope
    self._cache = cache
    self._generation = 0
    self._closed = False

  @classmethod
  def from_settings(cls, settings: Settings | None = None, *, jobs_repo: JobsRepository, channel: JobChannel | None = None, executor: RequestExecutor | None = None, cache: DailyCacheGate | None = None, recorder: TierRecorder | None = None) -> BlueprintService:
    """Wire the default tiers from settings."""
    settings = settings or get_settings()
    executor = executor or RequestExecutor(policy=RetryPolicy.from_settings(settings))
    if channel is None:
      local_channel = LocalJobChannel()
      jobs_repo = NotifyingJobsRepository(jobs_repo, local_channel)
      channel = local_channel

    scope = TrackerScope.from_settings(settings, jobs_repo, channel)
    submission = JobSubmissionClient.from_settings(settings, jobs_repo, executor)
    tiers = [WorkflowTier(submission, scope), ProviderTier(get_provider(settings, executor)), TemplateTier(score=settings.default_score)]
    chain = FallbackChain(tiers, recorder=recorder, default_score=settings.default_score)
    return cls(chain, scope, cache=cache)

  @property
  def closed(self) -> bool:
    return self._closed

  async def generate(self, owner: str, parameters: BlueprintParameters | Mapping[str, Any]) -> TierResult | None:
    """
    Produce a normalized blueprint, degrading through the tiers as needed.

    Returns None when this generation was superseded or the service was
    closed before a tier delivered.

    Raises:
      CreationError: when the input is invalid or the job row could not be created.
    """
    if self._closed:
      raise RuntimeError("BlueprintService is closed")
    validated = parse_parameters(parameters)

    self._scope.reset()
    self._generation += 1
    token = self._generation

    def is_active() -> bool:
      return not self._closed and token == self._generation

    request = GenerationRequest(owner=owner, parameters=validated, is_active=is_active)
    try:
      result = await self._chain.run(request)
    except GenerationSuperseded:
      logger.info("Generation for owner %s superseded before delivery", owner)
      return None
    finally:
      if request.job_id is not None and not self._scope.closed:
        self._scope.finish(request.job_id)

    if not is_active():
      logger.info("Discarding %s tier result for owner %s; generation was torn down", result.tier, owner)
      return None
    return result

  async def _artifact(self, owner: str, parameters: BlueprintParameters) -> NormalizedArtifact | None:
    result = await self.generate(owner, parameters)
    return result.artifact if result is not None else None

  async def daily_blueprint(self, owner: str, parameters: BlueprintParameters | Mapping[str, Any]) -> NormalizedArtifact | None:
    """Return today's blueprint for ``owner``, generating it once per owner-local day."""
    validated = parse_parameters(parameters)
    if self._cache is None:
      return await self._artifact(owner, validated)
    return await self._cache.get_or_generate(owner, lambda: self._artifact(owner, validated))

  async def refresh_daily_blueprint(self, owner: str, parameters: BlueprintParameters | Mapping[str, Any]) -> NormalizedArtifact | None:
    """
    Clear today's cached blueprint and generate a new one.

    Raises:
      CacheError: when today's record could not be cleared; nothing is generated.
    """
    validated = parse_parameters(parameters)
    if self._cache is None:
      raise CacheError("Daily cache is not configured.")
    return await self._cache.regenerate(owner, lambda: self._artifact(owner, validated))

  def close(self) -> None:
    """Tear down every tracker; in-flight results are discarded."""
    self._closed = True
    self._scope.close()

  async def drain(self) -> None:
    await self._chain.drain()
