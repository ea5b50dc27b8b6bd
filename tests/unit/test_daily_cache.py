from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from blueprint_engine.core.exceptions import CacheError
from blueprint_engine.schema.blueprint import BlueprintStep, NormalizedArtifact
from blueprint_engine.services.daily_cache import DailyCacheGate
from blueprint_engine.storage.cache_repo import CacheRecord


class CountingGenerator:
  def __init__(self) -> None:
    self.calls = 0

  async def __call__(self) -> NormalizedArtifact:
    self.calls += 1
    return NormalizedArtifact(steps=[BlueprintStep(step=1, title="Hook", text=f"Version {self.calls}")], score=85, hashtags=["#daily"])


def _fixed_clock(moment: datetime):
  return lambda: moment


@pytest.mark.anyio
async def test_second_call_same_day_hits_cache(cache_repo) -> None:
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, 9, 0, tzinfo=UTC)))
  generator = CountingGenerator()

  first = await gate.get_or_generate("user-1", generator)
  second = await gate.get_or_generate("user-1", generator)

  assert generator.calls == 1
  assert second == first
  assert ("user-1", date(2026, 3, 1)) in cache_repo.rows


@pytest.mark.anyio
async def test_invalidate_then_call_regenerates(cache_repo) -> None:
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, 9, 0, tzinfo=UTC)))
  generator = CountingGenerator()

  await gate.get_or_generate("user-1", generator)
  await gate.get_or_generate("user-1", generator)
  await gate.invalidate("user-1")
  third = await gate.get_or_generate("user-1", generator)

  assert generator.calls == 2
  assert third.steps[0].text == "Version 2"
  assert cache_repo.deleted == [("user-1", date(2026, 3, 1))]


@pytest.mark.anyio
async def test_invalidate_only_removes_today(cache_repo) -> None:
  yesterday = CacheRecord(owner="user-1", generated_date=date(2026, 2, 28), payload={"steps": [{"step": 1, "text": "old"}], "score": 80})
  cache_repo.rows[("user-1", yesterday.generated_date)] = yesterday
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, 9, 0, tzinfo=UTC)))

  await gate.invalidate("user-1")

  assert ("user-1", date(2026, 2, 28)) in cache_repo.rows


@pytest.mark.anyio
async def test_day_boundary_follows_owner_time_zone(cache_repo) -> None:
  # 03:30 UTC is still the previous evening in Los Angeles.
  moment = datetime(2026, 3, 2, 3, 30, tzinfo=UTC)
  zones = {"west": "America/Los_Angeles", "east": "Asia/Tokyo"}
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(moment), timezone_for=zones.get)

  assert gate.local_date("west") == date(2026, 3, 1)
  assert gate.local_date("east") == date(2026, 3, 2)
  assert gate.local_date("nobody") == date(2026, 3, 2)


@pytest.mark.anyio
async def test_unknown_time_zone_falls_back_to_utc(cache_repo) -> None:
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 2, 3, 30, tzinfo=UTC)), timezone_for=lambda owner: "Mars/Olympus_Mons")
  assert gate.local_date("user-1") == date(2026, 3, 2)


@pytest.mark.anyio
async def test_read_failure_is_treated_as_miss(cache_repo) -> None:
  cache_repo.fail_get = True
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, tzinfo=UTC)))
  generator = CountingGenerator()

  artifact = await gate.get_or_generate("user-1", generator)

  assert generator.calls == 1
  assert artifact.steps[0].text == "Version 1"


@pytest.mark.anyio
async def test_write_failure_still_returns_artifact(cache_repo) -> None:
  cache_repo.fail_upsert = True
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, tzinfo=UTC)))

  artifact = await gate.get_or_generate("user-1", CountingGenerator())

  assert artifact.score == 85
  assert cache_repo.rows == {}


@pytest.mark.anyio
async def test_invalidate_failure_is_a_cache_error(cache_repo) -> None:
  cache_repo.fail_delete = True
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, tzinfo=UTC)))
  generator = CountingGenerator()

  with pytest.raises(CacheError):
    await gate.regenerate("user-1", generator)
  assert generator.calls == 0


@pytest.mark.anyio
async def test_generation_failure_is_not_a_cache_error(cache_repo) -> None:
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, tzinfo=UTC)))

  async def failing() -> NormalizedArtifact:
    raise RuntimeError("generator exploded")

  with pytest.raises(RuntimeError):
    await gate.get_or_generate("user-1", failing)


@pytest.mark.anyio
async def test_naive_clock_is_treated_as_utc(cache_repo) -> None:
  gate = DailyCacheGate(cache_repo, clock=_fixed_clock(datetime(2026, 3, 1, 23, 59)))
  assert gate.local_date("user-1") == date(2026, 3, 1)
