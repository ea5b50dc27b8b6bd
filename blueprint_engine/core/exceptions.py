"""Error taxonomy for the generation orchestration layer."""

from __future__ import annotations


class BlueprintError(Exception):
  """Base class for all orchestration failures carrying a user-facing message."""

  default_message = "Something went wrong while generating your blueprint."

  def __init__(self, message: str | None = None, *, job_id: str | None = None) -> None:
    self.message = message or self.default_message
    self.job_id = job_id
    super().__init__(self.message)


class CreationError(BlueprintError):
  """Raised when the job row could not be created; no fallback is possible."""

  default_message = "Could not start generation. Please try again."


class TriggerError(BlueprintError):
  """Raised when the workflow webhook could not be triggered."""

  default_message = "The generation workflow could not be reached."


class JobTimeoutError(BlueprintError):
  """Raised when no terminal status arrived before the safety-net deadline."""

  default_message = "Generation is taking longer than expected."


class NormalizationError(BlueprintError):
  """Raised when a raw response has no recognizable shape."""

  default_message = "The generated response could not be read."


class CacheError(BlueprintError):
  """Raised when the daily cache could not be read, written or cleared."""

  default_message = "Could not refresh the cached blueprint."


class MutationError(BlueprintError):
  """Raised when an optimistic mutation was rolled back after a failed remote call."""

  default_message = "Your change could not be saved."
