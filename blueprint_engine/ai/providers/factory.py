"""Factory for the configured secondary provider."""

from __future__ import annotations

from blueprint_engine.ai.providers.base import Provider
from blueprint_engine.ai.providers.chat_proxy import ChatProxyProvider
from blueprint_engine.ai.providers.openai_compat import OpenAICompatibleProvider
from blueprint_engine.config import Settings
from blueprint_engine.utils.http_retry import RequestExecutor


def get_provider(settings: Settings, executor: RequestExecutor) -> Provider | None:
  """Return the provider selected by settings, or None when it is not configured."""
  if settings.provider_kind == "openai":
    if not settings.provider_api_key:
      return None
    return OpenAICompatibleProvider(settings.provider_model, api_key=settings.provider_api_key, base_url=settings.provider_base_url, timeout_seconds=settings.long_timeout_ms / 1000.0)

  if not settings.provider_base_url:
    return None
  return ChatProxyProvider(executor, url=settings.provider_base_url, model=settings.provider_model, api_key=settings.provider_api_key, timeout_ms=settings.long_timeout_ms)
