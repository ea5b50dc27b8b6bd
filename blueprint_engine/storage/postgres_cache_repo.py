"""Postgres-backed daily blueprint cache using SQLAlchemy."""

from __future__ import annotations

from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blueprint_engine.core.database import require_session_factory
from blueprint_engine.jobs.models import utc_timestamp
from blueprint_engine.schema.jobs import DailyBlueprintCache
from blueprint_engine.storage.cache_repo import CacheRecord, DailyCacheRepository


def build_upsert_statement(record: CacheRecord):  # type: ignore[no-untyped-def]
  """Build the last-write-wins upsert for one owner-day row."""
  stmt = insert(DailyBlueprintCache).values(owner=record.owner, generated_date=record.generated_date, payload=record.payload, created_at=utc_timestamp())
  return stmt.on_conflict_do_update(index_elements=["owner", "generated_date"], set_={"payload": stmt.excluded.payload, "created_at": stmt.excluded.created_at})


class PostgresDailyCacheRepository(DailyCacheRepository):
  """Persist cached blueprints keyed by owner and calendar day."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or require_session_factory()

  async def get(self, owner: str, generated_date: date) -> CacheRecord | None:
    async with self._session_factory() as session:
      stmt = select(DailyBlueprintCache).where(DailyBlueprintCache.owner == owner, DailyBlueprintCache.generated_date == generated_date)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return CacheRecord(owner=row.owner, generated_date=row.generated_date, payload=dict(row.payload or {}))

  async def upsert(self, record: CacheRecord) -> None:
    async with self._session_factory() as session:
      await session.execute(build_upsert_statement(record))
      await session.commit()

  async def delete(self, owner: str, generated_date: date) -> None:
    async with self._session_factory() as session:
      await session.execute(delete(DailyBlueprintCache).where(DailyBlueprintCache.owner == owner, DailyBlueprintCache.generated_date == generated_date))
      await session.commit()
