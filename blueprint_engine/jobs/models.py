"""Domain models for asynchronous blueprint generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

JobStatus = Literal["pending", "running", "completed", "failed"]
JobKind = Literal["viral_blueprint"]

# Statuses only move forward along this order; both terminal states share the last rank.
STATUS_ORDER: dict[str, int] = {"pending": 0, "running": 1, "completed": 2, "failed": 2}
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp() -> str:
  return datetime.now(UTC).strftime(_DATE_FORMAT)


def is_terminal(status: str | None) -> bool:
  return status in TERMINAL_STATUSES


def can_advance(current: str, new: str) -> bool:
  """Return True when moving from ``current`` to ``new`` keeps the status monotonic."""
  if current in TERMINAL_STATUSES:
    return new == current
  return STATUS_ORDER.get(new, -1) >= STATUS_ORDER.get(current, 0)


@dataclass
class JobRecord:
  """Represents a generation job row owned by the external workflow."""

  job_id: str
  owner: str
  kind: JobKind
  parameters: dict[str, Any]
  status: JobStatus
  created_at: str
  updated_at: str
  result: dict[str, Any] | list[Any] | str | None = None
  error: dict[str, Any] | None = None

  @property
  def terminal(self) -> bool:
    return is_terminal(self.status)

  @classmethod
  def from_row(cls, row: dict[str, Any]) -> JobRecord:
    """Build a record from a row-shaped mapping such as a push payload."""
    return cls(
      job_id=str(row.get("job_id") or row.get("id")),
      owner=str(row.get("owner") or row.get("user_id") or ""),
      kind=row.get("kind") or row.get("type") or "viral_blueprint",
      parameters=dict(row.get("parameters") or row.get("input") or {}),
      status=row.get("status") or "pending",
      created_at=str(row.get("created_at") or ""),
      updated_at=str(row.get("updated_at") or ""),
      result=row.get("result"),
      error=row.get("error"),
    )


@dataclass(frozen=True)
class JobStatusEvent:
  """Ephemeral notification of a job row mutation; carries the full updated row."""

  job_id: str
  record: JobRecord
  received_at: datetime = field(default_factory=lambda: datetime.now(UTC))

  @property
  def terminal(self) -> bool:
    return self.record.terminal
