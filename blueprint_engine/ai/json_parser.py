"""Lenient JSON extraction for model and workflow text output."""

from __future__ import annotations

import re
from typing import Any

import msgspec

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _try_decode(value: str) -> Any | None:
  try:
    return msgspec.json.decode(value.encode("utf-8"))
  except msgspec.DecodeError:
    return None


def strip_json_fences(text: str) -> str:
  """Return the body of the first fenced code block, or the text unchanged."""
  match = _FENCE_PATTERN.search(text)
  if match:
    return match.group(1).strip()
  return text


def parse_json_with_fallback(raw_text: str | None) -> Any | None:
  """
  Parse JSON from text that may be fenced or wrapped in prose.

  Tries the whole string, then the first fenced block, then the widest
  ``{...}`` span. Returns None when nothing decodes.
  """
  if not raw_text or not isinstance(raw_text, str):
    return None

  trimmed = raw_text.strip()
  direct = _try_decode(trimmed)
  if direct is not None:
    return direct

  fenced = strip_json_fences(trimmed)
  if fenced is not trimmed:
    parsed = _try_decode(fenced)
    if parsed is not None:
      return parsed

  # Fall back to the outermost object embedded in surrounding text.
  first_brace = trimmed.find("{")
  last_brace = trimmed.rfind("}")
  if first_brace != -1 and last_brace > first_brace:
    return _try_decode(trimmed[first_brace : last_brace + 1])
  return None
