from __future__ import annotations

import json

import httpx
import pytest

from blueprint_engine.core.exceptions import CreationError, TriggerError
from blueprint_engine.jobs.submission import JobSubmissionClient
from blueprint_engine.utils.http_retry import RequestExecutor
from blueprint_engine.utils.ids import is_uuid

WEBHOOK = "https://workflow.test/webhook/viral-blueprint"


async def _no_sleep(_: float) -> None:
  return None


def _client(repo, handler, *, webhook_url: str | None = WEBHOOK) -> JobSubmissionClient:
  executor = RequestExecutor(httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=_no_sleep, jitter=lambda: 0.0)
  return JobSubmissionClient(repo, executor, webhook_url=webhook_url)


@pytest.mark.anyio
async def test_submit_creates_pending_row_then_fires_trigger(jobs_repo) -> None:
  seen: list[dict] = []

  def handler(request: httpx.Request) -> httpx.Response:
    # The row must exist before the trigger leaves.
    body = json.loads(request.content)
    assert body["job_id"] in jobs_repo.records
    seen.append(body)
    return httpx.Response(200, json={"success": True, "message": "accepted"})

  client = _client(jobs_repo, handler)
  submitted = await client.submit("user-1", {"topic": "X", "platform": "TikTok"})

  assert is_uuid(submitted.job_id)
  assert jobs_repo.records[submitted.job_id].status == "pending"
  assert await submitted.trigger_succeeded() is True
  assert seen == [{"job_id": submitted.job_id, "topic": "X", "platform": "TikTok"}]


@pytest.mark.anyio
async def test_creation_failure_aborts_without_trigger(jobs_repo) -> None:
  calls = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    return httpx.Response(200)

  jobs_repo.fail_create = True
  client = _client(jobs_repo, handler)

  with pytest.raises(CreationError) as excinfo:
    await client.submit("user-1", {"topic": "X"})

  assert isinstance(excinfo.value.__cause__, ConnectionError)
  assert calls["count"] == 0
  assert jobs_repo.records == {}


@pytest.mark.anyio
async def test_trigger_failure_leaves_job_pending(jobs_repo) -> None:
  calls = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    return httpx.Response(500)

  client = _client(jobs_repo, handler)
  submitted = await client.submit("user-1", {"topic": "X"})

  assert await submitted.trigger_succeeded() is False
  assert calls["count"] == 3
  assert jobs_repo.records[submitted.job_id].status == "pending"


@pytest.mark.anyio
async def test_success_false_body_counts_as_failure(jobs_repo) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"success": False, "error": "quota"})

  submitted = await _client(jobs_repo, handler).submit("user-1", {"topic": "X"})
  assert await submitted.trigger_succeeded() is False


@pytest.mark.anyio
async def test_non_json_success_body_is_ignored(jobs_repo) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(202, text="Workflow was started")

  submitted = await _client(jobs_repo, handler).submit("user-1", {"topic": "X"})
  assert await submitted.trigger_succeeded() is True


@pytest.mark.anyio
async def test_trigger_rejects_non_uuid_job_id_without_network(jobs_repo) -> None:
  calls = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    return httpx.Response(200)

  with pytest.raises(TriggerError):
    await _client(jobs_repo, handler).trigger("job-123", {"topic": "X"})
  assert calls["count"] == 0


@pytest.mark.anyio
async def test_missing_webhook_url_fails_trigger(jobs_repo) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    raise AssertionError("no request expected")

  submitted = await _client(jobs_repo, handler, webhook_url=None).submit("user-1", {"topic": "X"})
  assert await submitted.trigger_succeeded() is False
