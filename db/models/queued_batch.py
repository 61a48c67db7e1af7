"""
db/models/queued_batch.py

Durable work-queue entry holding one batch of normalized job records.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin, utcnow


class QueuedBatchStatus:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class QueuedBatch(Base, TimestampMixin):
    __tablename__ = "queued_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    queue_name: Mapped[str] = mapped_column(String(100), nullable=False)
    import_run_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    source_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    batch_index: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Serialized normalized job records",
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=QueuedBatchStatus.WAITING,
    )
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    backoff_delay_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=2.0)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_queued_batches_queue_status_available", "queue_name", "status", "available_at"),
        Index("ix_queued_batches_import_run_id", "import_run_id"),
    )
