"""Optimistic in-memory collection reconciled against a remote store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from blueprint_engine.core.exceptions import MutationError
from blueprint_engine.jobs.models import utc_timestamp
from blueprint_engine.utils.ids import generate_temp_id, is_temp_id

logger = logging.getLogger(__name__)

Entry = dict[str, Any]
ChangeListener = Callable[[tuple[Entry, ...]], None]
ErrorListener = Callable[[MutationError], None]
MutationKind = Literal["create", "update", "delete"]


class RemoteCollection(Protocol):
  """Authoritative store behind an optimistic collection. Failures raise."""

  async def list(self) -> list[Entry]:
    """Return the full authoritative collection, newest first."""

  async def create(self, item: Entry) -> Entry:
    """Persist ``item`` and return the authoritative entry."""

  async def update(self, entry_id: str, patch: Entry) -> Entry | None:
    """Apply ``patch`` and optionally return the authoritative entry."""

  async def delete(self, entry_id: str) -> None:
    """Delete the entry."""


@dataclass(frozen=True)
class PendingMutation:
  """Handle for an optimistic change whose remote call is in flight."""

  kind: MutationKind
  entry_id: str
  task: asyncio.Task[Entry | None]

  async def result(self) -> Entry | None:
    """Wait for reconciliation. Raises MutationError when the change was rolled back."""
    return await asyncio.shield(self.task)


class OptimisticCollection:
  """
  Speculative local state for one collection, newest entries first.

  Mutations apply synchronously and reconcile when the remote call settles:
  a failed create removes its temporary entry, a failed update reloads the
  authoritative collection, and a failed delete restores the entry at the
  head. Entries are located by id at settle time, and a reload keeps the
  optimistic state of every other id still in flight, so concurrent
  mutations on distinct ids never clobber each other.
  """

  def __init__(self, remote: RemoteCollection, *, id_key: str = "id", timestamp_key: str | None = "updated_at", entries: Iterable[Entry] = ()) -> None:
    self._remote = remote
    self._id_key = id_key
    self._timestamp_key = timestamp_key
    self._entries: list[Entry] = [dict(entry) for entry in entries]
    self._listeners: list[ChangeListener] = []
    self._error_listeners: list[ErrorListener] = []
    self._syncing = 0
    # Optimistic state not yet confirmed, reapplied on top of every reload.
    self._pending_patches: dict[str, list[Entry]] = {}
    self._pending_deletes: dict[str, Entry] = {}

  @property
  def entries(self) -> tuple[Entry, ...]:
    return tuple(dict(entry) for entry in self._entries)

  @property
  def syncing(self) -> int:
    """Number of remote calls currently in flight."""
    return self._syncing

  def __len__(self) -> int:
    return len(self._entries)

  def get(self, entry_id: str) -> Entry | None:
    index = self._index_of(entry_id)
    return dict(self._entries[index]) if index is not None else None

  def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
    """Register a change listener; returns a function that removes it."""
    self._listeners.append(listener)
    return lambda: self._listeners.remove(listener) if listener in self._listeners else None

  def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
    self._error_listeners.append(listener)
    return lambda: self._error_listeners.remove(listener) if listener in self._error_listeners else None

  async def reload(self) -> None:
    """Replace local state with the authoritative collection, keeping unconfirmed mutations."""
    fetched = await self._tracked(self._remote.list())
    pending = [entry for entry in self._entries if is_temp_id(str(entry.get(self._id_key, "")))]
    rows: list[Entry] = []
    for entry in fetched:
      entry_id = entry.get(self._id_key)
      if entry_id in self._pending_deletes:
        continue
      rows.append(self._with_pending_patches(dict(entry)))
    self._entries = pending + rows
    self._notify()

  def create(self, item: Entry) -> PendingMutation:
    """Insert a temporary entry at the head and persist it in the background."""
    temp_id = generate_temp_id()
    self._entries.insert(0, {**item, self._id_key: temp_id})
    self._notify()
    task = self._spawn(self._confirm_create(temp_id, dict(item)), f"create:{temp_id}")
    return PendingMutation(kind="create", entry_id=temp_id, task=task)

  def update(self, entry_id: str, patch: Entry) -> PendingMutation:
    """Apply ``patch`` locally and persist it in the background."""
    index = self._index_of(entry_id)
    if index is None:
      raise KeyError(entry_id)
    applied = dict(patch)
    if self._timestamp_key:
      applied.setdefault(self._timestamp_key, utc_timestamp())
    self._entries[index] = {**self._entries[index], **applied, self._id_key: entry_id}
    self._pending_patches.setdefault(entry_id, []).append(applied)
    self._notify()
    task = self._spawn(self._confirm_update(entry_id, dict(patch), applied), f"update:{entry_id}")
    return PendingMutation(kind="update", entry_id=entry_id, task=task)

  def delete(self, entry_id: str) -> PendingMutation:
    """Remove the entry locally and delete it remotely in the background."""
    index = self._index_of(entry_id)
    if index is None:
      raise KeyError(entry_id)
    removed = self._entries.pop(index)
    self._pending_deletes[entry_id] = removed
    self._notify()
    task = self._spawn(self._confirm_delete(entry_id, removed), f"delete:{entry_id}")
    return PendingMutation(kind="delete", entry_id=entry_id, task=task)

  def _index_of(self, entry_id: str) -> int | None:
    for index, entry in enumerate(self._entries):
      if entry.get(self._id_key) == entry_id:
        return index
    return None

  def _with_pending_patches(self, entry: Entry) -> Entry:
    for applied in self._pending_patches.get(entry.get(self._id_key), ()):
      entry.update(applied)
    return entry

  def _settle_patch(self, entry_id: str, applied: Entry) -> None:
    patches = self._pending_patches.get(entry_id, [])
    for position, candidate in enumerate(patches):
      if candidate is applied:
        del patches[position]
        break
    if not patches:
      self._pending_patches.pop(entry_id, None)

  def _spawn(self, coro: Any, name: str) -> asyncio.Task[Entry | None]:
    task = asyncio.get_running_loop().create_task(coro, name=name)
    task.add_done_callback(self._on_settled)
    return task

  def _on_settled(self, task: asyncio.Task[Entry | None]) -> None:
    if task.cancelled():
      return
    error = task.exception()
    if isinstance(error, MutationError):
      for listener in list(self._error_listeners):
        try:
          listener(error)
        except Exception:  # noqa: BLE001
          logger.exception("Mutation error listener failed")

  def _notify(self) -> None:
    snapshot = self.entries
    for listener in list(self._listeners):
      try:
        listener(snapshot)
      except Exception:  # noqa: BLE001
        logger.exception("Collection listener failed")

  async def _tracked(self, awaitable: Awaitable[Any]) -> Any:
    self._syncing += 1
    try:
      return await awaitable
    finally:
      self._syncing -= 1

  async def _confirm_create(self, temp_id: str, item: Entry) -> Entry | None:
    try:
      created = await self._tracked(self._remote.create(item))
    except Exception as exc:  # noqa: BLE001
      index = self._index_of(temp_id)
      if index is not None:
        del self._entries[index]
        self._notify()
      logger.warning("Rolled back optimistic create %s: %s", temp_id, exc)
      raise MutationError("Your item could not be saved.") from exc

    index = self._index_of(temp_id)
    # Deleted locally while the create was in flight.
    if index is None:
      return dict(created)
    self._entries[index] = dict(created)
    self._notify()
    return dict(created)

  async def _confirm_update(self, entry_id: str, patch: Entry, applied: Entry) -> Entry | None:
    try:
      try:
        updated = await self._tracked(self._remote.update(entry_id, patch))
      finally:
        self._settle_patch(entry_id, applied)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Optimistic update of %s failed, reloading: %s", entry_id, exc)
      try:
        await self.reload()
      except Exception as reload_exc:  # noqa: BLE001
        logger.error("Reload after failed update of %s also failed: %s", entry_id, reload_exc)
      raise MutationError("Your change could not be saved.") from exc

    if updated is None:
      return self.get(entry_id)
    index = self._index_of(entry_id)
    if index is not None:
      self._entries[index] = self._with_pending_patches(dict(updated))
      self._notify()
    return dict(updated)

  async def _confirm_delete(self, entry_id: str, removed: Entry) -> Entry | None:
    try:
      try:
        await self._tracked(self._remote.delete(entry_id))
      finally:
        self._pending_deletes.pop(entry_id, None)
    except Exception as exc:  # noqa: BLE001
      # A reload may already have brought the entry back.
      if self._index_of(entry_id) is None:
        self._entries.insert(0, removed)
        self._notify()
      logger.warning("Restored %s after failed delete: %s", entry_id, exc)
      raise MutationError("Your item could not be deleted.") from exc
    return None
