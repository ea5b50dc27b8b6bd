"""Provider that calls a chat-completions proxy through the request executor."""

from __future__ import annotations

import logging

import httpx
import msgspec

from blueprint_engine.ai.providers.base import ChatMessage, ModelResponse, Provider, ProviderError
from blueprint_engine.utils.http_retry import RequestExecutor, RequestSpec

logger = logging.getLogger(__name__)


class ChatProxyProvider(Provider):
  """
  Posts ``{model, messages, temperature}`` to a proxy that answers with
  ``{success, content, usage}``.
  """

  name = "chat_proxy"

  def __init__(self, executor: RequestExecutor, *, url: str, model: str, api_key: str | None = None, temperature: float = 0.7, timeout_ms: int | None = None) -> None:
    self._executor = executor
    self._url = url
    self._model = model
    self._api_key = api_key
    self._temperature = temperature
    self._timeout_ms = timeout_ms

  def _headers(self) -> dict[str, str]:
    headers = {"content-type": "application/json"}
    if self._api_key:
      headers["authorization"] = f"Bearer {self._api_key}"
    return headers

  async def generate(self, messages: list[ChatMessage]) -> ModelResponse:
    spec = RequestSpec(method="POST", headers=self._headers(), json={"model": self._model, "messages": messages, "temperature": self._temperature})
    try:
      response = await self._executor.execute(self._url, spec, timeout_ms=self._timeout_ms)
    except (httpx.HTTPError, TimeoutError) as exc:
      raise ProviderError(f"Chat proxy unreachable: {type(exc).__name__}") from exc

    if not response.is_success:
      raise ProviderError(f"Chat proxy returned {response.status_code}")

    try:
      body = msgspec.json.decode(response.content)
    except msgspec.DecodeError as exc:
      raise ProviderError("Chat proxy returned a non-JSON body") from exc

    if not isinstance(body, dict) or body.get("success") is False:
      raise ProviderError("Chat proxy rejected the request")
    content = body.get("content") or ""
    if not isinstance(content, str) or not content.strip():
      raise ProviderError("Chat proxy returned empty content")

    logger.info("Chat proxy response received (%d chars)", len(content))
    usage = body.get("usage") if isinstance(body.get("usage"), dict) else None
    return ModelResponse(content=content, usage=usage)
