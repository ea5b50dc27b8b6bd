from __future__ import annotations

from datetime import date

from sqlalchemy import Date, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from blueprint_engine.core.database import Base

_UTC_NOW = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")

# Channel used by the row trigger that publishes job updates via pg_notify.
JOB_UPDATES_CHANNEL = "job_updates"


class Job(Base):
  __tablename__ = "jobs"

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  owner: Mapped[str] = mapped_column(String, nullable=False, index=True)
  kind: Mapped[str] = mapped_column(String, nullable=False, index=True)
  parameters: Mapped[dict] = mapped_column(JSONB, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)


class DailyBlueprintCache(Base):
  __tablename__ = "daily_blueprint_cache"
  __table_args__ = (UniqueConstraint("owner", "generated_date", name="ux_daily_blueprint_cache_owner_date"),)

  owner: Mapped[str] = mapped_column(String, primary_key=True)
  generated_date: Mapped[date] = mapped_column(Date, primary_key=True)
  payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
