"""Provider implementations."""

from blueprint_engine.ai.providers.base import ModelResponse, Provider, ProviderError
from blueprint_engine.ai.providers.chat_proxy import ChatProxyProvider
from blueprint_engine.ai.providers.factory import get_provider
from blueprint_engine.ai.providers.openai_compat import OpenAICompatibleProvider

__all__ = ["ModelResponse", "Provider", "ProviderError", "ChatProxyProvider", "OpenAICompatibleProvider", "get_provider"]
