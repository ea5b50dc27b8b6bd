"""Create jobs and daily blueprint cache tables with the job update trigger.

Revision ID: 5c1f9a7d2e10
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5c1f9a7d2e10"
down_revision = None
branch_labels = None
depends_on = None

_UTC_NOW = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")

# pg_notify payloads are capped at 8000 bytes; oversized rows go out without their result.
_NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION notify_job_update() RETURNS trigger AS $$
DECLARE
  payload text := row_to_json(NEW)::text;
BEGIN
  IF octet_length(payload) > 7900 THEN
    payload := (to_jsonb(NEW) - 'result' - 'parameters' || '{"result_omitted": true}'::jsonb)::text;
  END IF;
  PERFORM pg_notify('job_updates', payload);
  RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

_NOTIFY_TRIGGER = """
CREATE TRIGGER jobs_notify_update
AFTER UPDATE ON jobs
FOR EACH ROW EXECUTE FUNCTION notify_job_update();
"""


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("owner", sa.String(), nullable=False),
    sa.Column("kind", sa.String(), nullable=False),
    sa.Column("parameters", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_jobs_owner"), "jobs", ["owner"], unique=False)
  op.create_index(op.f("ix_jobs_kind"), "jobs", ["kind"], unique=False)
  op.create_index(op.f("ix_jobs_status"), "jobs", ["status"], unique=False)

  op.create_table(
    "daily_blueprint_cache",
    sa.Column("owner", sa.String(), nullable=False),
    sa.Column("generated_date", sa.Date(), nullable=False),
    sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("created_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.PrimaryKeyConstraint("owner", "generated_date"),
    sa.UniqueConstraint("owner", "generated_date", name="ux_daily_blueprint_cache_owner_date"),
  )

  op.execute(_NOTIFY_FUNCTION)
  op.execute(_NOTIFY_TRIGGER)


def downgrade() -> None:
  """Downgrade schema."""
  op.execute("DROP TRIGGER IF EXISTS jobs_notify_update ON jobs")
  op.execute("DROP FUNCTION IF EXISTS notify_job_update()")
  op.drop_table("daily_blueprint_cache")
  op.drop_index(op.f("ix_jobs_status"), table_name="jobs")
  op.drop_index(op.f("ix_jobs_kind"), table_name="jobs")
  op.drop_index(op.f("ix_jobs_owner"), table_name="jobs")
  op.drop_table("jobs")
