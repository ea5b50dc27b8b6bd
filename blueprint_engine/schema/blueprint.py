"""Request and artifact models for viral blueprint generation."""

from __future__ import annotations

from typing import Any

import msgspec
from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_PLATFORMS: tuple[str, ...] = ("TikTok", "Instagram", "Facebook", "X", "YouTube")
POST_TYPE_MAP: dict[str, str] = {
  "reel": "Video",
  "short": "Video",
  "tiktok": "Video",
  "video": "Video",
  "carousel": "Carousel",
  "story": "Story",
  "thread": "Thread",
  "post": "Post",
  "image post": "Post",
  "image": "Post",
}
VIDEO_POST_TYPES: frozenset[str] = frozenset({"Video", "Story"})
TOPIC_MAX_CHARS = 500
AUDIENCE_MAX_CHARS = 200


class BlueprintParameters(BaseModel):
  """Sanitized inputs shared by every generation tier."""

  model_config = ConfigDict(populate_by_name=True, frozen=True)

  topic: str = Field(min_length=1)
  platform: str
  post_type: str = Field(default="Post", alias="postType")
  objective: str = "viral"
  target_audience: str = Field(default="", alias="targetAudience")
  voice_context: str | None = Field(default=None, alias="voiceContext")

  @field_validator("topic", mode="before")
  @classmethod
  def _clip_topic(cls, value: Any) -> str:
    return str(value or "").strip()[:TOPIC_MAX_CHARS]

  @field_validator("target_audience", mode="before")
  @classmethod
  def _clip_audience(cls, value: Any) -> str:
    return str(value or "").strip()[:AUDIENCE_MAX_CHARS]

  @field_validator("platform", mode="before")
  @classmethod
  def _canonical_platform(cls, value: Any) -> str:
    candidate = str(value or "").strip().lower()
    for platform in ALLOWED_PLATFORMS:
      if platform.lower() == candidate:
        return platform
    raise ValueError(f"Unsupported platform value: {value!r}")

  @field_validator("post_type", mode="before")
  @classmethod
  def _canonical_post_type(cls, value: Any) -> str:
    return POST_TYPE_MAP.get(str(value or "post").strip().lower(), "Post")

  @property
  def is_video(self) -> bool:
    return self.post_type in VIDEO_POST_TYPES

  def to_payload(self) -> dict[str, Any]:
    """Return the camelCase body the workflow and providers expect."""
    return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BlueprintStep(msgspec.Struct, omit_defaults=True):
  """One ordered step; at least one of the text fields is set."""

  step: int
  title: str | None = None
  script: str | None = None
  text: str | None = None
  visual: str | None = None


class AudioVibe(msgspec.Struct, omit_defaults=True):
  mood: str | None = None
  bpm: str | None = None
  suggestion: str | None = None


class NormalizedArtifact(msgspec.Struct):
  """Canonical blueprint shape produced regardless of the raw source format."""

  steps: list[BlueprintStep]
  score: int
  keywords: list[str] = msgspec.field(default_factory=list)
  hooks: list[str] = msgspec.field(default_factory=list)
  hashtags: list[str] = msgspec.field(default_factory=list)
  source_shape: str = "steps"
  is_video: bool = False
  audio: AudioVibe | None = None

  def to_builtins(self) -> dict[str, Any]:
    return msgspec.to_builtins(self)

  @classmethod
  def from_builtins(cls, data: dict[str, Any]) -> NormalizedArtifact:
    return msgspec.convert(data, type=cls)
