"""Collapse heterogeneous blueprint responses into one NormalizedArtifact."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import msgspec

from blueprint_engine.ai.json_parser import parse_json_with_fallback
from blueprint_engine.core.exceptions import NormalizationError
from blueprint_engine.schema.blueprint import AudioVibe, BlueprintStep, NormalizedArtifact

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 85
ENVELOPE_KEYS: tuple[str, ...] = ("data", "result", "output", "response", "payload", "blueprint", "content")
MAX_UNWRAP_DEPTH = 4

_TITLE_KEYS = ("title", "name", "heading", "label")
_SCRIPT_KEYS = ("script", "voiceover", "voice_over", "dialogue", "spoken")
_TEXT_KEYS = ("text", "on_screen_text", "onScreenText", "content", "body", "copy", "caption", "tweet", "overlay")
_VISUAL_KEYS = ("visual", "visualSuggestion", "visual_suggestion", "visual_direction", "shot", "image", "design", "media", "description")


@dataclass(frozen=True)
class _Shape:
  name: str
  keys: tuple[str, ...]
  step_label: str


# Checked in order; the first key holding a usable collection wins.
SHAPES: tuple[_Shape, ...] = (
  _Shape("steps", ("steps",), "Step"),
  _Shape("scene_breakdown", ("directors_cut", "directorsCut", "scenes"), "Scene"),
  _Shape("slide_breakdown", ("slide_breakdown", "slideBreakdown", "slides"), "Slide"),
  _Shape("thread_breakdown", ("tweet_breakdown", "tweetBreakdown", "thread", "tweets"), "Tweet"),
  _Shape("frame_breakdown", ("frame_breakdown", "frameBreakdown", "frames"), "Frame"),
  _Shape("caption_sections", ("caption_structure", "captionStructure", "caption_sections"), "Section"),
)
FLAT_KEYS: tuple[str, ...] = ("hooks", "content_script", "contentScript", "seo_keywords", "keywords", "suggested_hashtags", "hashtags", "caption")


def _first(mapping: dict[str, Any], keys: Iterable[str]) -> Any:
  for key in keys:
    value = mapping.get(key)
    if value not in (None, "", [], {}):
      return value
  return None


def _clean_text(value: Any) -> str | None:
  if value is None or isinstance(value, (dict, list)):
    return None
  text = str(value).strip()
  return text or None


def as_string_list(value: Any) -> list[str]:
  """Coerce a loosely typed collection into a list of non-empty strings."""
  if value is None:
    return []
  if isinstance(value, str):
    text = value.strip()
    return [text] if text else []
  if isinstance(value, dict):
    value = [value]
  if not isinstance(value, (list, tuple)):
    text = _clean_text(value)
    return [text] if text else []

  items: list[str] = []
  for item in value:
    if isinstance(item, dict):
      item = _first(item, ("text", "hook", "keyword", "tag", "value", "name"))
    text = _clean_text(item)
    if text:
      items.append(text)
  return items


def normalize_hashtags(value: Any) -> list[str]:
  """Prefix every tag with ``#`` and drop duplicates, keeping first-seen order."""
  seen: set[str] = set()
  tags: list[str] = []
  for raw_tag in as_string_list(value):
    for token in raw_tag.split():
      tag = "#" + token.lstrip("#").strip(",")
      if tag == "#" or tag.lower() in seen:
        continue
      seen.add(tag.lower())
      tags.append(tag)
  return tags


def coerce_score(value: Any, default: int = DEFAULT_SCORE) -> int:
  """Return a positive integer score, substituting ``default`` for missing or non-positive values."""
  if isinstance(value, bool):
    return default
  if isinstance(value, str):
    value = value.strip().rstrip("%")
  try:
    number = float(value)
  except (TypeError, ValueError, OverflowError):
    return default
  if not math.isfinite(number):
    return default
  score = int(round(number))
  return score if score > 0 else default


def _dedupe(values: list[str]) -> list[str]:
  return list(dict.fromkeys(values))


def _build_step(item: Any, index: int, label: str, section_name: str | None = None) -> BlueprintStep | None:
  if isinstance(item, str):
    text = _clean_text(item)
    if text is None:
      return None
    return BlueprintStep(step=index, title=section_name or f"{label} {index}", text=text)
  if not isinstance(item, dict):
    return None

  script = _clean_text(_first(item, _SCRIPT_KEYS))
  text = _clean_text(_first(item, _TEXT_KEYS))
  visual = _clean_text(_first(item, _VISUAL_KEYS))
  title = _clean_text(_first(item, _TITLE_KEYS)) or section_name
  if script is None and text is None and visual is None:
    return None

  number = item.get("step") or item.get("index") or item.get("number")
  step_number = number if isinstance(number, int) and not isinstance(number, bool) and number > 0 else index
  return BlueprintStep(step=step_number, title=title or f"{label} {index}", script=script, text=text, visual=visual)


def _collect_steps(collection: Any, label: str) -> list[BlueprintStep]:
  # Caption structures often arrive as {"hook": "...", "body": "...", "cta": "..."}.
  if isinstance(collection, dict):
    entries: list[tuple[str | None, Any]] = [(str(key).replace("_", " ").title(), value) for key, value in collection.items()]
  elif isinstance(collection, list):
    entries = [(None, value) for value in collection]
  elif isinstance(collection, str):
    entries = [(None, collection)]
  else:
    return []

  steps: list[BlueprintStep] = []
  for section_name, value in entries:
    step = _build_step(value, len(steps) + 1, label, section_name)
    if step is not None:
      steps.append(step)
  return steps


def _seo_block(payload: dict[str, Any]) -> dict[str, Any]:
  block = payload.get("seo_strategy") or payload.get("seoStrategy")
  return block if isinstance(block, dict) else {}


def _audio(payload: dict[str, Any]) -> AudioVibe | None:
  block = payload.get("audio_vibe") or payload.get("audioVibe") or payload.get("audio")
  if not isinstance(block, dict):
    return None
  mood = _clean_text(block.get("mood"))
  bpm = _clean_text(block.get("bpm"))
  suggestion = _clean_text(block.get("suggestion"))
  if mood is None and bpm is None and suggestion is None:
    return None
  return AudioVibe(mood=mood, bpm=bpm, suggestion=suggestion)


def _is_video(payload: dict[str, Any], steps: list[BlueprintStep]) -> bool:
  for candidate in (payload, payload.get("blueprint")):
    if isinstance(candidate, dict):
      for key in ("is_video", "isVideoContent", "isVideo"):
        if isinstance(candidate.get(key), bool):
          return candidate[key]
  return any(step.script for step in steps)


def _finish(payload: dict[str, Any], steps: list[BlueprintStep], source_shape: str, default_score: int) -> NormalizedArtifact:
  seo = _seo_block(payload)
  keywords = as_string_list(_first(payload, ("keywords", "seo_keywords", "seoKeywords"))) + as_string_list(seo.get("visualKeywords") or seo.get("visual_keywords"))
  hooks = as_string_list(_first(payload, ("hooks", "hook"))) + as_string_list(seo.get("spokenHooks") or seo.get("spoken_hooks"))
  hashtags = normalize_hashtags(as_string_list(_first(payload, ("hashtags", "suggested_hashtags", "suggestedHashtags"))) + as_string_list(seo.get("captionKeywords") or seo.get("caption_keywords")))
  score = coerce_score(_first(payload, ("score", "viral_score", "viralScore")), default_score)
  return NormalizedArtifact(
    steps=steps,
    score=score,
    keywords=_dedupe(keywords),
    hooks=_dedupe(hooks),
    hashtags=hashtags,
    source_shape=str(payload.get("source_shape") or source_shape),
    is_video=_is_video(payload, steps),
    audio=_audio(payload),
  )


def _flat_step(payload: dict[str, Any]) -> BlueprintStep | None:
  script = _clean_text(_first(payload, ("content_script", "contentScript", "script")))
  text = _clean_text(_first(payload, ("caption", "text", "description")))
  visual = _clean_text(_first(payload, ("visual", "visual_direction", "visualSuggestion")))
  if script is None and text is None:
    # Hook or keyword-only payloads still collapse to one readable step.
    hooks = as_string_list(_first(payload, ("hooks", "hook")))
    keywords = as_string_list(_first(payload, ("keywords", "seo_keywords")))
    if hooks:
      text = hooks[0]
    elif keywords:
      text = ", ".join(keywords)
    else:
      return None
  title = _clean_text(_first(payload, ("title", "topic"))) or "Blueprint"
  return BlueprintStep(step=1, title=title, script=script, text=text, visual=visual)


def _normalize_mapping(payload: dict[str, Any], default_score: int) -> NormalizedArtifact | None:
  for shape in SHAPES:
    for key in shape.keys:
      if key not in payload:
        continue
      steps = _collect_steps(payload[key], shape.step_label)
      if steps:
        return _finish(payload, steps, shape.name, default_score)

  if any(key in payload for key in FLAT_KEYS):
    step = _flat_step(payload)
    if step is not None:
      return _finish(payload, [step], "flat", default_score)
  return None


def _unwrap(raw: Any, default_score: int, depth: int) -> NormalizedArtifact | None:
  if depth > MAX_UNWRAP_DEPTH or raw is None:
    return None
  if isinstance(raw, NormalizedArtifact):
    return raw
  if isinstance(raw, msgspec.Struct):
    raw = msgspec.to_builtins(raw)
  if isinstance(raw, (bytes, bytearray)):
    raw = raw.decode("utf-8", errors="replace")
  if isinstance(raw, str):
    return _unwrap(parse_json_with_fallback(raw), default_score, depth + 1)
  if isinstance(raw, list):
    for item in raw:
      if isinstance(item, (dict, str)):
        return _unwrap(item, default_score, depth + 1)
    return None
  if not isinstance(raw, dict):
    return None

  artifact = _normalize_mapping(raw, default_score)
  if artifact is not None:
    return artifact
  for key in ENVELOPE_KEYS:
    if key in raw:
      artifact = _unwrap(raw[key], default_score, depth + 1)
      if artifact is not None:
        return artifact
  return None


def normalize(raw: Any, *, default_score: int = DEFAULT_SCORE) -> NormalizedArtifact | None:
  """
  Map any recognized raw response onto the canonical step list.

  Accepts dicts, lists, JSON strings (fenced or embedded in prose) and
  envelopes such as ``{"data": {...}}``. Returns None for unknown or empty
  shapes instead of raising.
  """
  try:
    artifact = _unwrap(raw, default_score, 0)
  except (msgspec.ValidationError, TypeError, ValueError, OverflowError) as exc:
    logger.warning("Normalization failed on malformed payload: %s", exc)
    return None
  if artifact is None:
    logger.debug("No recognizable blueprint shape in %s payload", type(raw).__name__)
  return artifact


def require_artifact(raw: Any, *, default_score: int = DEFAULT_SCORE, job_id: str | None = None) -> NormalizedArtifact:
  """Normalize ``raw`` or raise NormalizationError."""
  artifact = normalize(raw, default_score=default_score)
  if artifact is None:
    raise NormalizationError(job_id=job_id)
  return artifact
