"""Deterministic blueprint built from the request parameters alone."""

from __future__ import annotations

import re
from typing import Any

from blueprint_engine.schema.blueprint import BlueprintParameters

TEMPLATE_SCORE = 85

_VIDEO_HOOKS = ("Stop scrolling", "Nobody talks about this", "Here's the truth", "You need to know this")
_TEXT_HOOKS = ("The truth about", "Nobody talks about", "Here's what works", "Save this for later")

_AUDIO_MOODS: dict[str, str] = {"TikTok": "Trending Lo-Fi Beat or Phonk Drop", "Instagram": "Trending Lo-Fi Beat or Phonk Drop", "YouTube": "Cinematic Build-Up"}


def _slug(value: str) -> str:
  return re.sub(r"[^0-9a-z]+", "", value.lower())


def _hashtags(parameters: BlueprintParameters) -> list[str]:
  tags = [f"#{_slug(parameters.topic)}", f"#{_slug(parameters.platform)}tips", "#viralcontent", "#contentcreator"]
  return [tag for tag in tags if tag != "#"]


def build_template_blueprint(parameters: BlueprintParameters, *, score: int = TEMPLATE_SCORE) -> dict[str, Any]:
  """
  Return a flat-shaped raw blueprint with exactly one step.

  Video post types carry a spoken script and a visual direction; every other
  post type carries caption text. The payload goes through the normalizer
  like any other tier's output.
  """
  topic = parameters.topic
  first_word = topic.split()[0] if topic.split() else topic
  payload: dict[str, Any] = {
    "title": "The Hook",
    "hooks": list(_VIDEO_HOOKS if parameters.is_video else _TEXT_HOOKS),
    "keywords": [f"{first_word} hack", "game changer", "watch this" if parameters.is_video else "read this"],
    "hashtags": _hashtags(parameters),
    "score": score,
    "is_video": parameters.is_video,
    "source_shape": "template",
  }

  if parameters.is_video:
    payload["content_script"] = f'"Stop scrolling if you want to know the truth about {topic}..."'
    payload["visual"] = "Close-up face shot, slight zoom-in. Bold text overlay with the hook."
    payload["audio_vibe"] = {
      "mood": _AUDIO_MOODS.get(parameters.platform, "Clean & Professional"),
      "bpm": "120-140" if parameters.platform == "TikTok" else "90-110",
      "suggestion": "Use trending sounds from the Discover page" if parameters.platform == "TikTok" else "Original audio performs best on this platform",
    }
  else:
    payload["caption"] = f"The truth about {topic} that nobody wants to talk about."
    payload["visual"] = "Bold headline graphic with contrasting colors."
  return payload
