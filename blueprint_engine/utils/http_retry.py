"""HTTP request retry logic with per-attempt timeouts and jittered exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from blueprint_engine.config import DEFAULT_RETRYABLE_STATUSES, Settings

logger = logging.getLogger(__name__)

MAX_JITTER_MS = 250

SleepFunc = Callable[[float], Awaitable[Any]]
JitterFunc = Callable[[], float]


def _default_jitter() -> float:
  return random.uniform(0, MAX_JITTER_MS)


@dataclass(frozen=True)
class RequestSpec:
  """Describes one outbound HTTP request independent of the target URL."""

  method: str = "POST"
  headers: Mapping[str, str] | None = None
  json: Any = None
  content: bytes | None = None
  params: Mapping[str, str] | None = None


@dataclass(frozen=True)
class RetryPolicy:
  """Retry budget and backoff configuration for one request."""

  timeout_ms: int = 60000
  max_retries: int = 2
  base_delay_ms: int = 750
  retryable_statuses: frozenset[int] = field(default=DEFAULT_RETRYABLE_STATUSES)

  def backoff_ms(self, attempt: int) -> float:
    """Return the pre-jitter delay after a failed zero-based attempt."""
    return float(self.base_delay_ms * (2**attempt))

  @classmethod
  def from_settings(cls, settings: Settings, *, timeout_ms: int | None = None) -> RetryPolicy:
    return cls(timeout_ms=timeout_ms or settings.standard_timeout_ms, max_retries=settings.max_retries, base_delay_ms=settings.base_delay_ms, retryable_statuses=settings.retryable_statuses)


class RequestExecutor:
  """
  Resilience wrapper around an httpx client.

  Each attempt is bounded by a hard timeout. Network failures, per-attempt
  timeouts and retryable statuses are retried up to ``max_retries`` times
  with ``base_delay * 2^attempt + jitter(0..250ms)`` between attempts.
  Non-retryable statuses are returned unchanged so callers can branch on them.
  """

  def __init__(self, client: httpx.AsyncClient | None = None, *, policy: RetryPolicy | None = None, sleep: SleepFunc = asyncio.sleep, jitter: JitterFunc = _default_jitter) -> None:
    self._client = client
    self._owns_client = client is None
    self._policy = policy or RetryPolicy()
    self._sleep = sleep
    self._jitter = jitter

  @property
  def policy(self) -> RetryPolicy:
    return self._policy

  def _get_client(self) -> httpx.AsyncClient:
    # Never trust environment proxy variables for webhook and provider calls.
    if self._client is None:
      self._client = httpx.AsyncClient(trust_env=False)
    return self._client

  async def aclose(self) -> None:
    """Close the underlying client when this executor created it."""
    if self._client is not None and self._owns_client:
      await self._client.aclose()
      self._client = None

  async def __aenter__(self) -> RequestExecutor:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    await self.aclose()

  async def execute(self, url: str, spec: RequestSpec | None = None, *, timeout_ms: int | None = None, max_retries: int | None = None, base_delay_ms: int | None = None, stream: bool = False) -> httpx.Response:
    """
    Send a request with retries and return the final response.

    Args:
      url: Absolute request URL.
      spec: Method, headers and body of the request (POST with no body by default).
      timeout_ms: Hard per-attempt timeout; overrides the policy default.
      max_retries: Retries after the first attempt; overrides the policy default.
      base_delay_ms: Backoff base; overrides the policy default.
      stream: Return without reading the body. The caller must close the response.

    Raises:
      httpx.TransportError or TimeoutError when the last attempt failed at the network level.
    """
    spec = spec or RequestSpec()
    policy = RetryPolicy(
      timeout_ms=timeout_ms if timeout_ms is not None else self._policy.timeout_ms,
      max_retries=max_retries if max_retries is not None else self._policy.max_retries,
      base_delay_ms=base_delay_ms if base_delay_ms is not None else self._policy.base_delay_ms,
      retryable_statuses=self._policy.retryable_statuses,
    )
    client = self._get_client()
    total_attempts = policy.max_retries + 1

    for attempt in range(total_attempts):
      request = client.build_request(spec.method, url, headers=spec.headers, json=spec.json, content=spec.content, params=spec.params)
      try:
        async with asyncio.timeout(policy.timeout_ms / 1000.0):
          response = await client.send(request, stream=stream)
      except (httpx.TransportError, TimeoutError) as exc:
        # Out of attempts: surface the network failure to the caller.
        if attempt >= policy.max_retries:
          logger.error("Request failed after %d attempts: url=%s, error=%s", total_attempts, url, type(exc).__name__)
          raise
        delay_ms = policy.backoff_ms(attempt) + self._jitter()
        logger.warning("Request attempt %d/%d failed: url=%s, error=%s, retrying in %.0fms", attempt + 1, total_attempts, url, type(exc).__name__, delay_ms)
        await self._sleep(delay_ms / 1000.0)
        continue

      if response.status_code in policy.retryable_statuses and attempt < policy.max_retries:
        # Release the connection before sleeping so the pool is not starved.
        await response.aclose()
        delay_ms = policy.backoff_ms(attempt) + self._jitter()
        logger.warning("Request attempt %d/%d returned %d: url=%s, retrying in %.0fms", attempt + 1, total_attempts, response.status_code, url, delay_ms)
        await self._sleep(delay_ms / 1000.0)
        continue

      if attempt > 0:
        logger.info("Request finished after retry: url=%s, attempt=%d/%d, status=%d", url, attempt + 1, total_attempts, response.status_code)
      return response

    # The loop always returns or raises on its final attempt.
    raise RuntimeError(f"Request to {url} finished without a response")
