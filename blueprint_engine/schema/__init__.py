"""Schema package exports."""

from .blueprint import AudioVibe, BlueprintParameters, BlueprintStep, NormalizedArtifact
from .jobs import JOB_UPDATES_CHANNEL, DailyBlueprintCache, Job

__all__ = ["AudioVibe", "BlueprintParameters", "BlueprintStep", "NormalizedArtifact", "JOB_UPDATES_CHANNEL", "DailyBlueprintCache", "Job"]
