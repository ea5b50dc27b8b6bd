"""Once-per-owner-per-day artifact cache with explicit invalidation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from blueprint_engine.ai.normalizer import normalize
from blueprint_engine.core.exceptions import CacheError
from blueprint_engine.schema.blueprint import NormalizedArtifact
from blueprint_engine.storage.cache_repo import CacheRecord, DailyCacheRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
TimezoneResolver = Callable[[str], str | None]
Generator = Callable[[], Awaitable[NormalizedArtifact | None]]


def _utc_now() -> datetime:
  return datetime.now(UTC)


class DailyCacheGate:
  """
  Serves one artifact per (owner, owner-local calendar day).

  A hit returns the stored payload without calling the generator. A miss
  calls the generator and writes the result through before returning;
  concurrent misses resolve last-write-wins. Read and write failures are
  logged and treated as a miss; ``invalidate`` failures raise CacheError.
  """

  def __init__(self, repo: DailyCacheRepository, *, clock: Clock = _utc_now, timezone_for: TimezoneResolver | None = None, default_timezone: str = "UTC") -> None:
    self._repo = repo
    self._clock = clock
    self._timezone_for = timezone_for
    self._default_timezone = default_timezone

  def _zone(self, owner: str) -> ZoneInfo:
    name = (self._timezone_for(owner) if self._timezone_for else None) or self._default_timezone
    try:
      return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
      logger.warning("Unknown time zone %r for owner %s; using UTC", name, owner)
      return ZoneInfo("UTC")

  def local_date(self, owner: str) -> date:
    """Return today's date in the owner's time zone."""
    now = self._clock()
    if now.tzinfo is None:
      now = now.replace(tzinfo=UTC)
    return now.astimezone(self._zone(owner)).date()

  async def get_cached(self, owner: str, generated_date: date | None = None) -> NormalizedArtifact | None:
    """Return today's cached artifact, or None. Raises CacheError when the read fails."""
    day = generated_date or self.local_date(owner)
    try:
      record = await self._repo.get(owner, day)
    except Exception as exc:  # noqa: BLE001
      raise CacheError("Could not read the cached blueprint.") from exc
    if record is None:
      return None
    artifact = normalize(record.payload)
    if artifact is None:
      logger.warning("Discarding unreadable cache payload for owner %s on %s", owner, day)
    return artifact

  async def get_or_generate(self, owner: str, generator: Generator) -> NormalizedArtifact | None:
    """Return today's artifact, generating and storing it on a miss."""
    day = self.local_date(owner)
    try:
      cached = await self.get_cached(owner, day)
    except CacheError as exc:
      logger.warning("Cache read failed for owner %s: %s", owner, exc.__cause__ or exc)
      cached = None

    if cached is not None:
      logger.info("Daily cache hit for owner %s on %s", owner, day)
      return cached

    logger.info("Daily cache miss for owner %s on %s", owner, day)
    artifact = await generator()
    if artifact is None:
      return None

    try:
      await self._repo.upsert(CacheRecord(owner=owner, generated_date=day, payload=artifact.to_builtins()))
    except Exception as exc:  # noqa: BLE001
      logger.warning("Cache write failed for owner %s on %s: %s", owner, day, exc)
    return artifact

  async def invalidate(self, owner: str) -> None:
    """Delete only today's record for ``owner``."""
    day = self.local_date(owner)
    try:
      await self._repo.delete(owner, day)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to clear cache for owner %s on %s: %s", owner, day, exc)
      raise CacheError("Could not clear today's cached blueprint.") from exc
    logger.info("Cleared daily cache for owner %s on %s", owner, day)

  async def regenerate(self, owner: str, generator: Generator) -> NormalizedArtifact | None:
    """Invalidate today's record, then generate a fresh one."""
    await self.invalidate(owner)
    return await self.get_or_generate(owner, generator)
