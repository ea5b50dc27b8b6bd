"""Postgres LISTEN/NOTIFY push channel for job row updates."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncpg
import msgspec

from blueprint_engine.core.database import asyncpg_dsn
from blueprint_engine.jobs.channel import CallbackRegistry, JobChannel, JobEventCallback, Subscription
from blueprint_engine.jobs.models import JobRecord, JobStatusEvent
from blueprint_engine.schema.jobs import JOB_UPDATES_CHANNEL

logger = logging.getLogger(__name__)

_ROW_QUERY = "SELECT row_to_json(j)::text FROM jobs AS j WHERE j.job_id = $1"


def decode_notification(payload: str | bytes) -> JobStatusEvent | None:
  """Decode a ``row_to_json`` notification payload into an event."""
  try:
    row = msgspec.json.decode(payload)
  except msgspec.DecodeError:
    logger.warning("Dropping undecodable job notification payload")
    return None
  if not isinstance(row, dict) or not (row.get("job_id") or row.get("id")):
    return None
  record = JobRecord.from_row(row)
  return JobStatusEvent(job_id=record.job_id, record=record)


def _result_omitted(payload: str | bytes) -> bool:
  try:
    row = msgspec.json.decode(payload)
  except msgspec.DecodeError:
    return False
  return isinstance(row, dict) and bool(row.get("result_omitted"))


class PostgresJobChannel(JobChannel):
  """
  Share one LISTEN connection across all job subscriptions.

  The ``jobs`` table trigger publishes ``row_to_json(NEW)`` on every update.
  Notifications are routed to callbacks by job id, so unsubscribing only
  touches the in-memory registry and never waits on the network.
  """

  def __init__(self, dsn: str | None = None, *, channel: str = JOB_UPDATES_CHANNEL) -> None:
    self._dsn = dsn or asyncpg_dsn()
    if not self._dsn:
      raise RuntimeError("Database connection is not configured (BLUEPRINT_PG_DSN is missing).")
    self._channel = channel
    self._registry = CallbackRegistry()
    self._connection: asyncpg.Connection | None = None
    self._connect_lock = asyncio.Lock()
    self._hydrations: set[asyncio.Task[None]] = set()

  async def _ensure_listening(self) -> None:
    async with self._connect_lock:
      if self._connection is not None and not self._connection.is_closed():
        return
      self._connection = await asyncpg.connect(self._dsn)
      await self._connection.add_listener(self._channel, self._on_notification)
      logger.info("Listening for job updates on channel %s", self._channel)

  def _on_notification(self, _connection: Any, _pid: int, _channel: str, payload: str) -> None:
    event = decode_notification(payload)
    if event is None:
      return
    if event.terminal and event.record.result is None and _result_omitted(payload):
      # Oversized rows are published without their result; re-read before dispatching.
      task = asyncio.get_running_loop().create_task(self._hydrate_and_dispatch(event.job_id))
      self._hydrations.add(task)
      task.add_done_callback(self._hydrations.discard)
      return
    self._registry.dispatch(event)

  async def _hydrate_and_dispatch(self, job_id: str) -> None:
    if self._connection is None or self._registry.listener_count(job_id) == 0:
      return
    try:
      row_json = await self._connection.fetchval(_ROW_QUERY, job_id)
    except (asyncpg.PostgresError, OSError) as exc:
      logger.warning("Failed to hydrate oversized notification for job %s: %s", job_id, exc)
      return
    event = decode_notification(row_json) if row_json else None
    if event is not None:
      self._registry.dispatch(event)

  async def subscribe(self, job_id: str, callback: JobEventCallback) -> Subscription:
    await self._ensure_listening()
    return self._registry.add(job_id, callback)

  async def aclose(self) -> None:
    if self._connection is None:
      return
    try:
      await self._connection.remove_listener(self._channel, self._on_notification)
    finally:
      await self._connection.close()
      self._connection = None
