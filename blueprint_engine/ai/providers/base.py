"""Secondary generation provider contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

ChatMessage = dict[str, str]


class ProviderError(Exception):
  """Raised when a provider call fails or returns nothing usable."""


@dataclass(frozen=True)
class ModelResponse:
  """Raw text returned by a provider along with optional token usage."""

  content: str
  usage: dict[str, Any] | None = None


class Provider(Protocol):
  """Synchronous request/response text generator used as fallback tier 2."""

  name: str

  async def generate(self, messages: list[ChatMessage]) -> ModelResponse:
    """Return the model's best-effort structured text for ``messages``."""
