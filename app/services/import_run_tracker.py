"""
app/services/import_run_tracker.py

Lifecycle owner for import run records.

The tracker is the only component that changes a run's status or batch
counters. Every mutation is a guarded UPDATE (``status = 'processing'``)
executed in its own short transaction, so concurrent workers, the
orchestrator and the repair sweep can interleave freely:

- terminal runs never re-open and late reports are ignored;
- completion is derived from ``completed_batches >= total_batches`` by a
  single conditional UPDATE, so exactly one caller observes the transition;
- per-batch reports carrying a batch index are claimed in a ledger table
  first, so redelivered batches are counted once.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import TrackerSettings, get_tracker_settings
from app.domain.job_import import BatchStats, FailedReason, RepairSummary
from app.failure_codes import STALLED_RUN_TIMED_OUT
from db.base import as_utc, utcnow
from db.models.import_run import ImportRun, ImportRunBatchEvent
from db.repositories.import_run_repository import ImportRunRepository

logger = logging.getLogger(__name__)


class StorageUnavailableError(RuntimeError):
    """
    Raised when a tracker update could not reach the backing store.
    """


class ImportRunTracker:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        settings: TrackerSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if session_factory is None:
            from db.session import get_session_factory

            self._session_factory = get_session_factory()
        else:
            self._session_factory = session_factory
        self._settings = settings or get_tracker_settings()
        self._clock = clock

    def create(self, source_url: str, total: int = 0, total_batches: int = 0) -> uuid.UUID:
        """
        Create a processing run; raises RunAlreadyActiveError when one already exists.
        """

        with self._transaction() as db:
            run = ImportRunRepository(db).create_run(
                source_url=source_url,
                total=total,
                total_batches=total_batches,
                timestamp=self._clock(),
            )
            run_id = run.id
        logger.info("Import run created run_id=%s source=%s", run_id, source_url)
        return run_id

    def get(self, run_id: uuid.UUID) -> ImportRun | None:
        with self._session_factory() as db:
            return ImportRunRepository(db).get_run(run_id)

    def has_processing_run(self, source_url: str | None = None) -> bool:
        with self._session_factory() as db:
            return ImportRunRepository(db).has_processing_run(source_url)

    def update_counts(
        self,
        run_id: uuid.UUID,
        stats: BatchStats,
        *,
        batch_index: int | None = None,
    ) -> bool:
        """
        Add a batch's outcome counts to the run.

        Returns False when the run is gone, terminal, or this batch's counts
        were already recorded.
        """

        if self._processing_time_ms(run_id) is None:
            return False

        with self._transaction() as db:
            repository = ImportRunRepository(db)
            if batch_index is not None and not repository.claim_batch_event(
                run_id=run_id,
                batch_index=batch_index,
                event=ImportRunBatchEvent.COUNTS,
            ):
                db.rollback()
                logger.info("Duplicate batch counts ignored run_id=%s batch=%s", run_id, batch_index)
                return False

            applied = repository.add_counts(
                run_id=run_id,
                new=stats.new,
                updated=stats.updated,
                failed=stats.failed,
                failed_reasons=[reason.to_payload() for reason in stats.failed_reasons],
            )
            if not applied:
                db.rollback()
                logger.info("Counts ignored for non-processing run run_id=%s", run_id)
            return applied

    def record_batch_completion(self, run_id: uuid.UUID, batch_index: int | None = None) -> bool:
        """
        Count one finished batch and complete the run when every batch is accounted for.

        Returns True only for the call that caused the run to complete.
        """

        processing_time_ms = self._processing_time_ms(run_id)
        if processing_time_ms is None:
            return False

        with self._transaction() as db:
            repository = ImportRunRepository(db)
            if batch_index is not None and not repository.claim_batch_event(
                run_id=run_id,
                batch_index=batch_index,
                event=ImportRunBatchEvent.COMPLETION,
            ):
                db.rollback()
                logger.info("Duplicate batch completion ignored run_id=%s batch=%s", run_id, batch_index)
                return False

            if not repository.increment_completed_batches(run_id):
                db.rollback()
                return False

            completed = repository.complete_if_all_batches_done(
                run_id=run_id,
                processing_time_ms=processing_time_ms,
            )

        if completed:
            logger.info("Import run completed run_id=%s processing_time_ms=%s", run_id, processing_time_ms)
        return completed

    def finalize(self, run_id: uuid.UUID) -> bool:
        """
        Complete a processing run outright (empty feed, or no batches produced).
        """

        processing_time_ms = self._processing_time_ms(run_id)
        if processing_time_ms is None:
            return False

        with self._transaction() as db:
            completed = ImportRunRepository(db).mark_completed(
                run_id=run_id,
                processing_time_ms=processing_time_ms,
            )

        if completed:
            logger.info("Import run finalized run_id=%s processing_time_ms=%s", run_id, processing_time_ms)
        return completed

    def mark_failed(
        self,
        run_id: uuid.UUID,
        reason: FailedReason,
        *,
        batch_index: int | None = None,
    ) -> bool:
        """
        Move a processing run to failed and record why.

        With a batch index the failing batch is also counted as accounted for,
        once. No-op for terminal or missing runs.
        """

        processing_time_ms = self._processing_time_ms(run_id)
        if processing_time_ms is None:
            return False

        with self._transaction() as db:
            repository = ImportRunRepository(db)
            count_batch = batch_index is not None and repository.claim_batch_event(
                run_id=run_id,
                batch_index=batch_index,
                event=ImportRunBatchEvent.COMPLETION,
            )
            failed = repository.mark_failed(
                run_id=run_id,
                processing_time_ms=processing_time_ms,
                error_message=(reason.error or reason.reason)[:2000],
                failed_reason=reason.to_payload(),
                count_batch=count_batch,
            )
            if not failed:
                db.rollback()

        if failed:
            logger.error(
                "Import run failed run_id=%s reason=%s error=%s",
                run_id,
                reason.reason,
                reason.error,
            )
        return failed

    def update_batch_count(
        self,
        run_id: uuid.UUID,
        total_batches: int,
        *,
        total: int | None = None,
    ) -> bool:
        """
        Record the real batch count (and record total) of a processing run.

        Completions may already have been reported against an earlier
        estimate, so the completion condition is re-checked in the same
        transaction. Returns False when the run is no longer processing.
        """

        processing_time_ms = self._processing_time_ms(run_id)
        if processing_time_ms is None:
            return False

        with self._transaction() as db:
            repository = ImportRunRepository(db)
            applied = repository.set_batch_totals(
                run_id=run_id,
                total_batches=total_batches,
                total=total,
            )
            completed = applied and repository.complete_if_all_batches_done(
                run_id=run_id,
                processing_time_ms=processing_time_ms,
            )

        if completed:
            logger.info("Import run completed after batch count update run_id=%s", run_id)
        return applied

    def repair_stuck_runs(self) -> RepairSummary:
        """
        Finalize processing runs older than the staleness threshold that are secretly done.

        Runs that are genuinely stalled are reported, and failed only when
        the stalled-run timeout policy is enabled.
        """

        now = self._clock()
        cutoff = now - timedelta(minutes=self._settings.stuck_run_threshold_minutes)
        fail_after = self._settings.stalled_run_fail_after_minutes

        with self._session_factory() as db:
            candidates = [
                (run.id, run.source_url, run.total_batches, run.completed_batches, as_utc(run.timestamp))
                for run in ImportRunRepository(db).list_processing_runs_before(cutoff)
            ]

        finalized: list[uuid.UUID] = []
        failed: list[uuid.UUID] = []
        stalled: list[uuid.UUID] = []

        for run_id, source_url, total_batches, completed_batches, created_at in candidates:
            try:
                if total_batches > 0 and completed_batches >= total_batches:
                    if self._repair_finalize(run_id, empty=False):
                        logger.warning("Repaired run with missed completion run_id=%s", run_id)
                        finalized.append(run_id)
                elif total_batches == 0 and completed_batches == 0:
                    if self._repair_finalize(run_id, empty=True):
                        logger.warning("Repaired empty run that was never finalized run_id=%s", run_id)
                        finalized.append(run_id)
                elif fail_after > 0 and created_at < now - timedelta(minutes=fail_after):
                    reason = FailedReason(
                        reason=STALLED_RUN_TIMED_OUT,
                        error=(
                            f"{completed_batches}/{total_batches} batches finished "
                            f"after {fail_after} minutes"
                        ),
                    )
                    if self.mark_failed(run_id, reason):
                        failed.append(run_id)
                else:
                    logger.warning(
                        "Import run stalled run_id=%s source=%s completed_batches=%s total_batches=%s",
                        run_id,
                        source_url,
                        completed_batches,
                        total_batches,
                    )
                    stalled.append(run_id)
            except StorageUnavailableError:
                logger.exception("Repair sweep could not update run run_id=%s", run_id)

        return RepairSummary(
            examined=len(candidates),
            finalized=finalized,
            failed=failed,
            stalled=stalled,
        )

    def _repair_finalize(self, run_id: uuid.UUID, *, empty: bool) -> bool:
        # Conditions are re-evaluated by the UPDATE itself; the sweep's snapshot may be stale.
        processing_time_ms = self._processing_time_ms(run_id)
        if processing_time_ms is None:
            return False

        with self._transaction() as db:
            repository = ImportRunRepository(db)
            if empty:
                return repository.complete_if_empty(run_id=run_id, processing_time_ms=processing_time_ms)
            return repository.complete_if_all_batches_done(
                run_id=run_id,
                processing_time_ms=processing_time_ms,
            )

    def _processing_time_ms(self, run_id: uuid.UUID) -> int | None:
        try:
            with self._session_factory() as db:
                timestamp = ImportRunRepository(db).get_timestamp(run_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Could not read import run {run_id}") from exc
        if timestamp is None:
            logger.info("Import run not found run_id=%s", run_id)
            return None
        elapsed = self._clock() - as_utc(timestamp)
        return max(0, int(elapsed.total_seconds() * 1000))

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """
        Yield a session and commit on exit; callers roll back explicitly to discard.
        """

        with self._session_factory() as db:
            try:
                yield db
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageUnavailableError(f"Import run update failed: {exc}") from exc
            except BaseException:
                db.rollback()
                raise
