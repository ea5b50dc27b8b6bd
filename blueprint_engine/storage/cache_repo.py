"""Storage interfaces for the once-per-day blueprint cache."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol


@dataclass(frozen=True)
class CacheRecord:
  """One cached artifact for an owner and calendar day."""

  owner: str
  generated_date: date
  payload: dict[str, Any]


class DailyCacheRepository(Protocol):
  """Repository contract keyed on the (owner, generated_date) composite."""

  async def get(self, owner: str, generated_date: date) -> CacheRecord | None:
    """Return the record for the owner-day, if present."""

  async def upsert(self, record: CacheRecord) -> None:
    """Insert or overwrite the record for its owner-day."""

  async def delete(self, owner: str, generated_date: date) -> None:
    """Delete the record for the owner-day if it exists."""
