"""
Repository backing the durable batch work queue.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from db.models.queued_batch import QueuedBatch, QueuedBatchStatus


class QueuedBatchRepository:
    def __init__(self, session: Session, *, queue_name: str) -> None:
        self._session = session
        self._queue_name = queue_name

    def add_many(self, rows: Sequence[dict[str, Any]]) -> list[QueuedBatch]:
        batches = [QueuedBatch(queue_name=self._queue_name, **row) for row in rows]
        self._session.add_all(batches)
        self._session.flush()
        return batches

    def get(self, batch_id: uuid.UUID) -> QueuedBatch | None:
        return self._session.get(QueuedBatch, batch_id, populate_existing=True)

    def next_available_ids(self, *, now: datetime, limit: int = 10) -> list[uuid.UUID]:
        stmt = (
            select(QueuedBatch.id)
            .where(
                QueuedBatch.queue_name == self._queue_name,
                QueuedBatch.status == QueuedBatchStatus.WAITING,
                QueuedBatch.available_at <= now,
            )
            .order_by(QueuedBatch.available_at.asc(), QueuedBatch.batch_index.asc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt).all())

    def try_claim(self, *, batch_id: uuid.UUID, worker_id: str, now: datetime) -> bool:
        stmt = (
            update(QueuedBatch)
            .where(
                QueuedBatch.id == batch_id,
                QueuedBatch.status == QueuedBatchStatus.WAITING,
            )
            .values(
                status=QueuedBatchStatus.ACTIVE,
                attempts_made=QueuedBatch.attempts_made + 1,
                locked_by=worker_id,
                locked_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def set_status(
        self,
        *,
        batch_id: uuid.UUID,
        from_status: str,
        to_status: str,
        **values: Any,
    ) -> bool:
        stmt = (
            update(QueuedBatch)
            .where(QueuedBatch.id == batch_id, QueuedBatch.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def list_stale_active(self, *, locked_before: datetime) -> list[QueuedBatch]:
        stmt = select(QueuedBatch).where(
            QueuedBatch.queue_name == self._queue_name,
            QueuedBatch.status == QueuedBatchStatus.ACTIVE,
            QueuedBatch.locked_at < locked_before,
        )
        return list(self._session.scalars(stmt).all())

    def count_by_status(self) -> dict[str, int]:
        stmt = (
            select(QueuedBatch.status, func.count())
            .where(QueuedBatch.queue_name == self._queue_name)
            .group_by(QueuedBatch.status)
        )
        return {status: count for status, count in self._session.execute(stmt).all()}

    def delete_by_run_id(self, run_id: uuid.UUID) -> int:
        result = self._session.execute(
            delete(QueuedBatch).where(
                QueuedBatch.queue_name == self._queue_name,
                QueuedBatch.import_run_id == run_id,
            )
        )
        return result.rowcount

    def delete_all(self) -> int:
        result = self._session.execute(
            delete(QueuedBatch).where(QueuedBatch.queue_name == self._queue_name)
        )
        return result.rowcount
