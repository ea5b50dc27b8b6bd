from __future__ import annotations

import json

import httpx
import pytest

from blueprint_engine.ai.fallback import FallbackChain, GenerationRequest, GenerationSuperseded, ProviderTier, TemplateTier, TierEvent, WorkflowTier
from blueprint_engine.ai.providers.base import ModelResponse, ProviderError
from blueprint_engine.core.exceptions import CreationError
from blueprint_engine.jobs.models import JobRecord
from blueprint_engine.jobs.submission import JobSubmissionClient
from blueprint_engine.jobs.tracker import TrackerScope
from blueprint_engine.schema.blueprint import BlueprintParameters
from blueprint_engine.utils.http_retry import RequestExecutor

WEBHOOK = "https://workflow.test/webhook/viral-blueprint"
WORKFLOW_RESULT = {"data": {"directors_cut": [{"step": 1, "title": "Hook", "script": "Stop", "visual": "Face"}, {"step": 2, "title": "CTA", "script": "Follow", "visual": "Point"}], "viral_score": 93}}


async def _no_sleep(_: float) -> None:
  return None


class FakeProvider:
  name = "fake"

  def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
    self.content = content
    self.error = error
    self.calls: list[list[dict]] = []

  async def generate(self, messages):
    self.calls.append(messages)
    if self.error is not None:
      raise self.error
    return ModelResponse(content=self.content or "")


class RecordingTierRecorder:
  def __init__(self, *, fail: bool = False) -> None:
    self.events: list[TierEvent] = []
    self.fail = fail

  async def record(self, event: TierEvent) -> None:
    self.events.append(event)
    if self.fail:
      raise RuntimeError("metrics sink down")


def _parameters(**overrides) -> BlueprintParameters:
  return BlueprintParameters.model_validate({"topic": "Morning routines", "platform": "TikTok", "postType": "reel", **overrides})


def _workflow_tier(jobs_repo, channel, handler, *, deadline: float = 5.0) -> WorkflowTier:
  executor = RequestExecutor(httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=_no_sleep, jitter=lambda: 0.0)
  submission = JobSubmissionClient(jobs_repo, executor, webhook_url=WEBHOOK)
  return WorkflowTier(submission, TrackerScope(jobs_repo, channel, deadline_seconds=deadline))


def _completing_handler(channel, result):
  def handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    # Simulate the workflow finishing and the push channel delivering the row.
    channel.publish(JobRecord(job_id=body["job_id"], owner="user-1", kind="viral_blueprint", parameters=body, status="completed", created_at="", updated_at="", result=result))
    return httpx.Response(200, json={"success": True})

  return handler


@pytest.mark.anyio
async def test_workflow_tier_serves_when_push_completes(jobs_repo, channel) -> None:
  recorder = RecordingTierRecorder()
  provider = FakeProvider(content="{}")
  chain = FallbackChain([_workflow_tier(jobs_repo, channel, _completing_handler(channel, WORKFLOW_RESULT)), ProviderTier(provider), TemplateTier()], recorder=recorder)

  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))
  await chain.drain()

  assert result.tier == "workflow"
  assert result.job_id is not None
  assert [step.title for step in result.artifact.steps] == ["Hook", "CTA"]
  assert result.artifact.score == 93
  assert provider.calls == []
  assert jobs_repo.get_calls == 0
  assert channel.listener_count() == 0
  assert [event.tier for event in recorder.events] == ["workflow"]


@pytest.mark.anyio
async def test_trigger_failure_falls_through_to_provider(jobs_repo, channel) -> None:
  provider_payload = "```json\n" + json.dumps({"tweet_breakdown": ["1/ hook", "2/ payoff"], "suggested_hashtags": ["mornings"]}) + "\n```"
  provider = FakeProvider(content=provider_payload)
  chain = FallbackChain([_workflow_tier(jobs_repo, channel, lambda request: httpx.Response(500)), ProviderTier(provider), TemplateTier()], recorder=RecordingTierRecorder())
  request = GenerationRequest(owner="user-1", parameters=_parameters())

  result = await chain.run(request)

  assert result.tier == "provider"
  assert result.artifact.source_shape == "thread_breakdown"
  assert result.artifact.hashtags == ["#mornings"]
  assert result.failures == ("workflow:TriggerError",)
  assert len(provider.calls) == 1
  # The orphaned job row is left pending for the external process.
  assert jobs_repo.records[request.job_id].status == "pending"
  assert channel.listener_count() == 0


@pytest.mark.anyio
async def test_provider_failure_falls_through_to_template(jobs_repo, channel) -> None:
  provider = FakeProvider(error=ProviderError("provider down"))
  chain = FallbackChain([_workflow_tier(jobs_repo, channel, lambda request: httpx.Response(503)), ProviderTier(provider), TemplateTier()], recorder=RecordingTierRecorder())

  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))

  assert result.tier == "template"
  assert len(result.artifact.steps) == 1
  assert result.artifact.steps[0].script
  assert result.artifact.score == 85
  assert result.failures == ("workflow:TriggerError", "provider:ProviderError")


@pytest.mark.anyio
async def test_unreadable_workflow_result_falls_through(jobs_repo, channel) -> None:
  provider = FakeProvider(content="no json here")
  chain = FallbackChain([_workflow_tier(jobs_repo, channel, _completing_handler(channel, {"status": "ok"})), ProviderTier(provider), TemplateTier()], recorder=RecordingTierRecorder())

  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters(postType="carousel")))

  assert result.tier == "template"
  assert result.failures == ("workflow:NormalizationError", "provider:NormalizationError")
  assert result.artifact.steps[0].text
  assert result.artifact.steps[0].script is None


@pytest.mark.anyio
async def test_failed_job_status_falls_through(jobs_repo, channel) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    channel.publish(JobRecord(job_id=body["job_id"], owner="user-1", kind="viral_blueprint", parameters=body, status="failed", created_at="", updated_at="", error={"message": "boom"}))
    return httpx.Response(200)

  chain = FallbackChain([_workflow_tier(jobs_repo, channel, handler), ProviderTier(None), TemplateTier()], recorder=RecordingTierRecorder())
  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))

  assert result.tier == "template"
  assert result.failures[0] == "workflow:TriggerError"


@pytest.mark.anyio
async def test_creation_error_propagates(jobs_repo, channel) -> None:
  jobs_repo.fail_create = True
  provider = FakeProvider(content="{}")
  chain = FallbackChain([_workflow_tier(jobs_repo, channel, lambda request: httpx.Response(200)), ProviderTier(provider), TemplateTier()], recorder=RecordingTierRecorder())

  with pytest.raises(CreationError):
    await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))
  assert provider.calls == []


@pytest.mark.anyio
async def test_recorder_failure_never_blocks_delivery() -> None:
  recorder = RecordingTierRecorder(fail=True)
  chain = FallbackChain([TemplateTier()], recorder=recorder)

  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))
  await chain.drain()

  assert result.tier == "template"
  assert len(recorder.events) == 1


@pytest.mark.anyio
async def test_inactive_request_is_superseded_before_next_tier() -> None:
  provider = FakeProvider(error=ProviderError("down"))
  state = {"active": True}

  class DeactivatingTier(ProviderTier):
    async def run(self, request):
      state["active"] = False
      return await super().run(request)

  chain = FallbackChain([DeactivatingTier(provider), TemplateTier()], recorder=RecordingTierRecorder())

  with pytest.raises(GenerationSuperseded):
    await chain.run(GenerationRequest(owner="user-1", parameters=_parameters(), is_active=lambda: state["active"]))


@pytest.mark.anyio
async def test_infinite_provider_score_still_serves_provider_tier() -> None:
  provider = FakeProvider(content='{"hooks": ["Stop scrolling"], "viral_score": "inf"}')
  chain = FallbackChain([ProviderTier(provider), TemplateTier()], recorder=RecordingTierRecorder())

  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))

  assert result.tier == "provider"
  assert result.artifact.score == 85


@pytest.mark.anyio
async def test_normalizer_crash_falls_through_to_next_tier() -> None:
  class ExplodingScore:
    def __float__(self) -> float:
      raise RuntimeError("score exploded")

  class RawTier(TemplateTier):
    name = "provider"

    async def run(self, request):
      return {"hooks": ["Stop scrolling"], "viral_score": ExplodingScore()}

  chain = FallbackChain([RawTier(), TemplateTier()], recorder=RecordingTierRecorder())

  result = await chain.run(GenerationRequest(owner="user-1", parameters=_parameters()))

  assert result.tier == "template"
  assert result.failures == ("provider:RuntimeError",)
