"""
db/models/import_run.py

Import run log: one row per triggered or scheduled fetch of one feed source.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin, utcnow


class ImportRunStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportRunBatchEvent:
    COUNTS = "counts"
    COMPLETION = "completion"


class ImportRun(Base, TimestampMixin):
    __tablename__ = "import_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    file_name: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        comment="Path and query of the source URL",
    )
    source_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Run creation time, used for ordering and staleness",
    )
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_reasons: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ImportRunStatus.PROCESSING,
    )
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_import_runs_source_url", "source_url"),
        Index("ix_import_runs_timestamp", "timestamp"),
        Index("ix_import_runs_status_timestamp", "status", "timestamp"),
        Index(
            "uq_import_runs_source_url_processing",
            "source_url",
            unique=True,
            postgresql_where=text("status = 'processing'"),
            sqlite_where=text("status = 'processing'"),
        ),
    )


class ImportRunBatchEventRecord(Base):
    """
    Claim ledger making per-batch tracker updates idempotent under redelivery.
    """

    __tablename__ = "import_run_batch_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("import_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_index: Mapped[int] = mapped_column(Integer, nullable=False)
    event: Mapped[str] = mapped_column(String(32), nullable=False, comment="counts, completion")
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint(
            "import_run_id",
            "batch_index",
            "event",
            name="uq_import_run_batch_events_run_batch_event",
        ),
    )
