"""
Repository for import run persistence, conditional status updates and listing.

Every status or counter mutation is a single UPDATE guarded by
``status = 'processing'``; the returned rowcount tells the caller whether
it won the transition.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import ColumnElement, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.import_run import ImportRun, ImportRunBatchEventRecord, ImportRunStatus
from db.repositories.dialect import insert_for


class RunAlreadyActiveError(RuntimeError):
    """
    Raised when the storage-level guard rejects a second processing run for a source.
    """

    def __init__(self, source_url: str) -> None:
        super().__init__(f"An import is already processing for {source_url}")
        self.source_url = source_url


def file_name_from_url(source_url: str) -> str:
    parsed = urlparse(source_url)
    if not parsed.scheme or not parsed.netloc:
        return source_url
    return parsed.path + (f"?{parsed.query}" if parsed.query else "")


class ImportRunRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_run(
        self,
        *,
        source_url: str,
        total: int = 0,
        total_batches: int = 0,
        timestamp: datetime | None = None,
    ) -> ImportRun:
        run = ImportRun(
            file_name=file_name_from_url(source_url),
            source_url=source_url,
            total=total,
            new=0,
            updated=0,
            failed=0,
            failed_reasons=[],
            status=ImportRunStatus.PROCESSING,
            total_batches=total_batches,
            completed_batches=0,
        )
        if timestamp is not None:
            run.timestamp = timestamp
        self._session.add(run)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise RunAlreadyActiveError(source_url) from exc
        return run

    def get_run(self, run_id: uuid.UUID) -> ImportRun | None:
        return self._session.get(ImportRun, run_id, populate_existing=True)

    def has_processing_run(self, source_url: str | None = None) -> bool:
        stmt = select(ImportRun.id).where(ImportRun.status == ImportRunStatus.PROCESSING)
        if source_url is not None:
            stmt = stmt.where(ImportRun.source_url == source_url)
        return self._session.scalars(stmt.limit(1)).first() is not None

    def list_runs(self, *, page: int = 1, limit: int = 50) -> tuple[list[ImportRun], int]:
        page = max(1, page)
        limit = max(1, limit)
        stmt = (
            select(ImportRun)
            .order_by(ImportRun.timestamp.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(self._session.scalars(stmt).all())
        total = self._session.scalar(select(func.count()).select_from(ImportRun)) or 0
        return items, total

    def list_processing_runs_before(self, cutoff: datetime) -> list[ImportRun]:
        stmt = (
            select(ImportRun)
            .where(
                ImportRun.status == ImportRunStatus.PROCESSING,
                ImportRun.timestamp < cutoff,
            )
            .order_by(ImportRun.timestamp.asc())
        )
        return list(self._session.scalars(stmt).all())

    def get_timestamp(self, run_id: uuid.UUID) -> datetime | None:
        return self._session.scalar(select(ImportRun.timestamp).where(ImportRun.id == run_id))

    def claim_batch_event(self, *, run_id: uuid.UUID, batch_index: int, event: str) -> bool:
        """
        Insert the (run, batch, event) marker; False when it was already recorded.
        """

        stmt = (
            insert_for(self._session, ImportRunBatchEventRecord)
            .values(import_run_id=run_id, batch_index=batch_index, event=event)
            .on_conflict_do_nothing(index_elements=["import_run_id", "batch_index", "event"])
        )
        return self._session.execute(stmt).rowcount == 1

    def add_counts(
        self,
        *,
        run_id: uuid.UUID,
        new: int,
        updated: int,
        failed: int,
        failed_reasons: Sequence[dict[str, Any]] = (),
    ) -> bool:
        applied = self._update_processing(
            run_id,
            new=ImportRun.new + new,
            updated=ImportRun.updated + updated,
            failed=ImportRun.failed + failed,
        )
        if applied and failed_reasons:
            self._append_failed_reasons(run_id, failed_reasons)
        return applied

    def increment_completed_batches(self, run_id: uuid.UUID) -> bool:
        return self._update_processing(
            run_id,
            completed_batches=ImportRun.completed_batches + 1,
        )

    def set_batch_totals(
        self,
        *,
        run_id: uuid.UUID,
        total_batches: int,
        total: int | None = None,
    ) -> bool:
        values: dict[str, Any] = {"total_batches": total_batches}
        if total is not None:
            values["total"] = total
        return self._update_processing(run_id, **values)

    def complete_if_all_batches_done(self, *, run_id: uuid.UUID, processing_time_ms: int) -> bool:
        return self._update_processing(
            run_id,
            ImportRun.total_batches > 0,
            ImportRun.completed_batches >= ImportRun.total_batches,
            status=ImportRunStatus.COMPLETED,
            processing_time_ms=processing_time_ms,
        )

    def complete_if_empty(self, *, run_id: uuid.UUID, processing_time_ms: int) -> bool:
        return self._update_processing(
            run_id,
            ImportRun.total_batches == 0,
            ImportRun.completed_batches == 0,
            status=ImportRunStatus.COMPLETED,
            processing_time_ms=processing_time_ms,
        )

    def mark_completed(self, *, run_id: uuid.UUID, processing_time_ms: int) -> bool:
        return self._update_processing(
            run_id,
            status=ImportRunStatus.COMPLETED,
            processing_time_ms=processing_time_ms,
        )

    def mark_failed(
        self,
        *,
        run_id: uuid.UUID,
        processing_time_ms: int,
        error_message: str,
        failed_reason: dict[str, Any],
        count_batch: bool = False,
    ) -> bool:
        values: dict[str, Any] = {
            "status": ImportRunStatus.FAILED,
            "processing_time_ms": processing_time_ms,
            "error_message": error_message,
        }
        if count_batch:
            values["completed_batches"] = ImportRun.completed_batches + 1
        applied = self._update_processing(run_id, **values)
        if applied:
            self._append_failed_reasons(run_id, [failed_reason])
        return applied

    def delete_run(self, run_id: uuid.UUID) -> bool:
        self._session.execute(
            delete(ImportRunBatchEventRecord).where(ImportRunBatchEventRecord.import_run_id == run_id)
        )
        result = self._session.execute(delete(ImportRun).where(ImportRun.id == run_id))
        return result.rowcount > 0

    def delete_all_runs(self) -> int:
        self._session.execute(delete(ImportRunBatchEventRecord))
        result = self._session.execute(delete(ImportRun))
        return result.rowcount

    def _update_processing(
        self,
        run_id: uuid.UUID,
        *conditions: ColumnElement[bool],
        **values: Any,
    ) -> bool:
        stmt = (
            update(ImportRun)
            .where(
                ImportRun.id == run_id,
                ImportRun.status == ImportRunStatus.PROCESSING,
                *conditions,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def _append_failed_reasons(self, run_id: uuid.UUID, reasons: Sequence[dict[str, Any]]) -> None:
        # Runs inside the transaction that already holds the row lock from the guarded UPDATE.
        current = self._session.scalar(select(ImportRun.failed_reasons).where(ImportRun.id == run_id))
        merged = [*(current or []), *reasons]
        self._session.execute(
            update(ImportRun)
            .where(ImportRun.id == run_id)
            .values(failed_reasons=merged)
            .execution_options(synchronize_session=False)
        )
