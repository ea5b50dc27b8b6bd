from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import httpx
import pytest

from blueprint_engine.core.exceptions import CacheError, CreationError
from blueprint_engine.jobs.models import JobRecord
from blueprint_engine.schema.blueprint import BlueprintParameters
from blueprint_engine.services.blueprints import BlueprintService
from blueprint_engine.services.daily_cache import DailyCacheGate
from blueprint_engine.utils.http_retry import RequestExecutor


async def _no_sleep(_: float) -> None:
  return None


def _executor(handler) -> RequestExecutor:
  return RequestExecutor(httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=_no_sleep, jitter=lambda: 0.0)


async def _wait_for_listener(channel, count: int = 1) -> None:
  for _ in range(100):
    if channel.listener_count() >= count:
      return
    await asyncio.sleep(0)
  raise AssertionError("tracker never subscribed")


@pytest.mark.anyio
async def test_trigger_500_delivers_template_without_waiting_for_deadline(settings, jobs_repo) -> None:
  calls = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    return httpx.Response(500)

  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, executor=_executor(handler))

  # The deadline is 60s; delivery must not depend on it.
  result = await asyncio.wait_for(service.generate("user-1", {"topic": "X", "platform": "TikTok"}), timeout=5)

  assert result is not None
  assert result.tier == "template"
  assert len(result.artifact.steps) == 1
  assert result.artifact.score == 85
  assert calls["count"] == 3
  assert jobs_repo.get_calls == 0
  await service.drain()


@pytest.mark.anyio
async def test_new_generation_supersedes_previous(settings, jobs_repo, channel) -> None:
  calls = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    body = json.loads(request.content)
    if calls["count"] == 2:
      result = {"frame_breakdown": [{"overlay": "Wait for it", "shot": "Wide"}]}
      channel.publish(JobRecord(job_id=body["job_id"], owner="user-1", kind="viral_blueprint", parameters=body, status="completed", created_at="", updated_at="", result=result))
    return httpx.Response(200, json={"success": True})

  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, channel=channel, executor=_executor(handler))
  first = asyncio.create_task(service.generate("user-1", {"topic": "First", "platform": "Instagram"}))
  await _wait_for_listener(channel)

  second = await asyncio.wait_for(service.generate("user-1", {"topic": "Second", "platform": "Instagram"}), timeout=5)

  assert await asyncio.wait_for(first, timeout=5) is None
  assert second.tier == "workflow"
  assert second.artifact.source_shape == "frame_breakdown"
  assert channel.listener_count() == 0


@pytest.mark.anyio
async def test_close_tears_down_and_discards_in_flight_generation(settings, jobs_repo, channel) -> None:
  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, channel=channel, executor=_executor(lambda request: httpx.Response(202)))
  pending = asyncio.create_task(service.generate("user-1", {"topic": "X", "platform": "YouTube"}))
  await _wait_for_listener(channel)

  service.close()

  assert channel.listener_count() == 0
  assert await asyncio.wait_for(pending, timeout=5) is None
  assert jobs_repo.get_calls == 0


@pytest.mark.anyio
async def test_invalid_parameters_surface_as_creation_error(settings, jobs_repo) -> None:
  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, executor=_executor(lambda request: httpx.Response(200)))

  with pytest.raises(CreationError):
    await service.generate("user-1", {"topic": "X", "platform": "MySpace"})
  assert jobs_repo.records == {}


@pytest.mark.anyio
async def test_creation_error_is_the_only_hard_failure(settings, jobs_repo) -> None:
  jobs_repo.fail_create = True
  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, executor=_executor(lambda request: httpx.Response(200)))

  with pytest.raises(CreationError) as excinfo:
    await service.generate("user-1", {"topic": "X", "platform": "X"})
  assert excinfo.value.message


@pytest.mark.anyio
async def test_daily_blueprint_generates_once_per_day(settings, jobs_repo, cache_repo) -> None:
  calls = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    return httpx.Response(500)

  cache = DailyCacheGate(cache_repo, clock=lambda: datetime(2026, 5, 4, 12, 0, tzinfo=UTC))
  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, executor=_executor(handler), cache=cache)
  parameters = {"topic": "Meal prep", "platform": "Instagram", "postType": "carousel"}

  first = await service.daily_blueprint("user-1", parameters)
  second = await service.daily_blueprint("user-1", parameters)
  refreshed = await service.refresh_daily_blueprint("user-1", parameters)

  assert first == second
  assert refreshed == first
  assert len(jobs_repo.records) == 2
  assert calls["count"] == 6


@pytest.mark.anyio
async def test_refresh_without_cache_is_a_cache_error(settings, jobs_repo) -> None:
  service = BlueprintService.from_settings(settings, jobs_repo=jobs_repo, executor=_executor(lambda request: httpx.Response(500)))
  with pytest.raises(CacheError):
    await service.refresh_daily_blueprint("user-1", {"topic": "X", "platform": "X"})


def test_parameters_are_sanitized() -> None:
  parameters = BlueprintParameters.model_validate({"topic": "  " + "t" * 600, "platform": "tiktok", "postType": "Short", "targetAudience": "a" * 300})

  assert len(parameters.topic) == 500
  assert parameters.platform == "TikTok"
  assert parameters.post_type == "Video"
  assert parameters.is_video
  assert len(parameters.target_audience) == 200
  assert parameters.to_payload()["postType"] == "Video"
  assert parameters.objective == "viral"
