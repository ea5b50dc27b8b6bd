"""Identifier utilities."""

from __future__ import annotations

import re
import secrets
import string
import uuid

TEMP_ID_PREFIX = "temp_"
_UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_nanoid(size: int = 16) -> str:
  """Return a short non-sequential id suitable for public references."""
  alphabet = string.ascii_letters + string.digits
  return "".join(secrets.choice(alphabet) for _ in range(size))


def generate_temp_id() -> str:
  """Return a temporary id for an entry awaiting server confirmation."""
  return f"{TEMP_ID_PREFIX}{generate_nanoid(12)}"


def is_temp_id(value: str) -> bool:
  return value.startswith(TEMP_ID_PREFIX)


def is_uuid(value: str | None) -> bool:
  """Return True when the value is a canonical UUID string."""
  if not value:
    return False
  return _UUID_PATTERN.match(value) is not None
