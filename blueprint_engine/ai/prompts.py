"""Prompt construction for the secondary provider tier."""

from __future__ import annotations

from blueprint_engine.ai.providers.base import ChatMessage
from blueprint_engine.schema.blueprint import BlueprintParameters

SYSTEM_PROMPT = (
  "You are a social media strategist who designs viral content blueprints. "
  "Respond with a single JSON object and no prose. Use the keys: "
  '"directors_cut" (ordered list of {"step", "title", "script" or "text", "visual"}), '
  '"hooks", "seo_keywords", "suggested_hashtags", "viral_score" (1-100) '
  'and, for video content only, "audio_vibe" ({"mood", "bpm", "suggestion"}).'
)


def build_blueprint_messages(parameters: BlueprintParameters) -> list[ChatMessage]:
  """Return chat messages describing the same request the workflow receives."""
  content_kind = "a short-form video (give each step a spoken script)" if parameters.is_video else f"a {parameters.post_type.lower()} (give each step caption text)"
  lines = [
    f"Platform: {parameters.platform}",
    f"Post type: {parameters.post_type}",
    f"Topic: {parameters.topic}",
    f"Objective: {parameters.objective}",
  ]
  if parameters.target_audience:
    lines.append(f"Target audience: {parameters.target_audience}")
  if parameters.voice_context:
    lines.append(f"Brand voice: {parameters.voice_context}")
  lines.append(f"Create a 5-step blueprint for {content_kind} with a visual direction per step.")
  return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": "\n".join(lines)}]
