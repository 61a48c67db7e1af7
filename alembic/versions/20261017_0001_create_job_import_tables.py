"""create job import tables

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "import_runs",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("file_name", sa.String(length=1000), nullable=False),
        sa.Column("source_url", sa.String(length=1000), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("new", sa.Integer(), nullable=False),
        sa.Column("updated", sa.Integer(), nullable=False),
        sa.Column("failed", sa.Integer(), nullable=False),
        sa.Column("failed_reasons", _JSON, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("total_batches", sa.Integer(), nullable=False),
        sa.Column("completed_batches", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_runs_source_url", "import_runs", ["source_url"], unique=False)
    op.create_index("ix_import_runs_timestamp", "import_runs", ["timestamp"], unique=False)
    op.create_index("ix_import_runs_status_timestamp", "import_runs", ["status", "timestamp"], unique=False)
    op.create_index(
        "uq_import_runs_source_url_processing",
        "import_runs",
        ["source_url"],
        unique=True,
        postgresql_where=sa.text("status = 'processing'"),
        sqlite_where=sa.text("status = 'processing'"),
    )

    op.create_table(
        "import_run_batch_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("import_run_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("batch_index", sa.Integer(), nullable=False),
        sa.Column("event", sa.String(length=32), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["import_run_id"], ["import_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "import_run_id",
            "batch_index",
            "event",
            name="uq_import_run_batch_events_run_batch_event",
        ),
    )

    op.create_table(
        "job_postings",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("source_url", sa.String(length=1000), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("url", sa.String(length=2000), nullable=True),
        sa.Column("category", sa.String(length=255), nullable=True),
        sa.Column("job_type", sa.String(length=100), nullable=True),
        sa.Column("region", sa.String(length=255), nullable=True),
        sa.Column("published_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id", "source_url", name="uq_job_postings_external_id_source_url"),
    )
    op.create_index("ix_job_postings_title", "job_postings", ["title"], unique=False)
    op.create_index("ix_job_postings_source_url", "job_postings", ["source_url"], unique=False)

    op.create_table(
        "queued_batches",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("queue_name", sa.String(length=100), nullable=False),
        sa.Column("import_run_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("source_url", sa.String(length=1000), nullable=False),
        sa.Column("batch_index", sa.Integer(), nullable=False),
        sa.Column("payload", _JSON, nullable=False, comment="Serialized normalized job records"),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("attempts_made", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("backoff_delay_seconds", sa.Float(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.String(length=255), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_queued_batches_queue_status_available",
        "queued_batches",
        ["queue_name", "status", "available_at"],
        unique=False,
    )
    op.create_index("ix_queued_batches_import_run_id", "queued_batches", ["import_run_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_queued_batches_import_run_id", table_name="queued_batches")
    op.drop_index("ix_queued_batches_queue_status_available", table_name="queued_batches")
    op.drop_table("queued_batches")
    op.drop_index("ix_job_postings_source_url", table_name="job_postings")
    op.drop_index("ix_job_postings_title", table_name="job_postings")
    op.drop_table("job_postings")
    op.drop_table("import_run_batch_events")
    op.drop_index("uq_import_runs_source_url_processing", table_name="import_runs")
    op.drop_index("ix_import_runs_status_timestamp", table_name="import_runs")
    op.drop_index("ix_import_runs_timestamp", table_name="import_runs")
    op.drop_index("ix_import_runs_source_url", table_name="import_runs")
    op.drop_table("import_runs")
