"""OpenAI-compatible provider implementation using the openai SDK."""

from __future__ import annotations

import logging

from openai import AsyncOpenAI, OpenAIError

from blueprint_engine.ai.providers.base import ChatMessage, ModelResponse, Provider, ProviderError

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(Provider):
  """Chat-completions client for any OpenAI-compatible endpoint (xAI, OpenRouter, OpenAI)."""

  name = "openai"

  def __init__(self, model: str, *, api_key: str | None, base_url: str | None = None, timeout_seconds: float = 60.0, client: AsyncOpenAI | None = None) -> None:
    self.model = model
    if client is None:
      if not api_key:
        raise ValueError("BLUEPRINT_PROVIDER_API_KEY is required for the openai provider")
      # Retries are owned by the fallback chain, not the SDK.
      client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds, max_retries=0)
    self._client = client

  async def generate(self, messages: list[ChatMessage]) -> ModelResponse:
    try:
      response = await self._client.chat.completions.create(model=self.model, messages=messages)
    except OpenAIError as exc:
      raise ProviderError(f"Provider call failed: {type(exc).__name__}") from exc

    if not response.choices:
      raise ProviderError("Provider returned no choices")
    content = response.choices[0].message.content or ""
    if not content.strip():
      raise ProviderError("Provider returned empty content")
    logger.info("Provider %s response received (%d chars)", self.model, len(content))

    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    return ModelResponse(content=content, usage=usage)
