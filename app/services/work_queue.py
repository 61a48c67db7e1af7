"""
app/services/work_queue.py

Database-backed durable queue for import batches.

Delivery is at-least-once: a batch is claimed with a conditional
``waiting -> active`` update, and a batch whose worker disappears is
returned to ``waiting`` once its lease expires. Failed attempts are
re-scheduled with exponential backoff until ``max_attempts`` is spent.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import QueueSettings, get_queue_settings
from app.domain.job_import import ImportBatch, NormalizedJobRecord, QueueStats
from db.base import utcnow
from db.models.queued_batch import QueuedBatch, QueuedBatchStatus
from db.repositories.queued_batch_repository import QueuedBatchRepository

logger = logging.getLogger(__name__)

_CLAIM_SCAN_LIMIT = 10


class EnqueueError(RuntimeError):
    """
    Raised when batches could not be written to the queue.
    """


@dataclass(frozen=True)
class ClaimedBatch:
    """
    A batch leased to one worker for one delivery attempt.
    """

    id: uuid.UUID
    import_run_id: uuid.UUID
    source_url: str
    batch_index: int
    jobs: list[NormalizedJobRecord]
    attempts_made: int
    max_attempts: int

    @classmethod
    def from_row(cls, row: QueuedBatch) -> ClaimedBatch:
        return cls(
            id=row.id,
            import_run_id=row.import_run_id,
            source_url=row.source_url,
            batch_index=row.batch_index,
            jobs=[NormalizedJobRecord.from_payload(item) for item in row.payload],
            attempts_made=row.attempts_made,
            max_attempts=row.max_attempts,
        )


class WorkQueue:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        settings: QueueSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if session_factory is None:
            from db.session import get_session_factory

            self._session_factory = get_session_factory()
        else:
            self._session_factory = session_factory
        self._settings = settings or get_queue_settings()
        self._clock = clock

    @property
    def name(self) -> str:
        return self._settings.queue_name

    def enqueue(
        self,
        batch: ImportBatch,
        *,
        attempts: int | None = None,
        backoff_delay_seconds: float | None = None,
    ) -> uuid.UUID:
        return self.enqueue_many(
            [batch],
            attempts=attempts,
            backoff_delay_seconds=backoff_delay_seconds,
        )[0]

    def enqueue_many(
        self,
        batches: Sequence[ImportBatch],
        *,
        attempts: int | None = None,
        backoff_delay_seconds: float | None = None,
    ) -> list[uuid.UUID]:
        """
        Persist every batch in one transaction; either all are queued or none.
        """

        if not batches:
            return []

        now = self._clock()
        rows = [
            {
                "import_run_id": batch.import_run_id,
                "source_url": batch.source_url,
                "batch_index": batch.batch_index,
                "payload": [job.to_payload() for job in batch.jobs],
                "status": QueuedBatchStatus.WAITING,
                "attempts_made": 0,
                "max_attempts": attempts or self._settings.max_attempts,
                "backoff_delay_seconds": (
                    self._settings.backoff_delay_seconds
                    if backoff_delay_seconds is None
                    else backoff_delay_seconds
                ),
                "available_at": now,
            }
            for batch in batches
        ]

        try:
            with self._session_factory() as db:
                queued = self._repository(db).add_many(rows)
                batch_ids = [row.id for row in queued]
                db.commit()
        except SQLAlchemyError as exc:
            raise EnqueueError(f"Could not enqueue {len(rows)} batch(es): {exc}") from exc

        logger.info(
            "Batches enqueued queue=%s run_id=%s count=%s",
            self.name,
            batches[0].import_run_id,
            len(batch_ids),
        )
        return batch_ids

    def claim(self, worker_id: str) -> ClaimedBatch | None:
        """
        Lease the oldest due batch to worker_id, or return None when nothing is due.
        """

        now = self._clock()
        with self._session_factory() as db:
            repository = self._repository(db)
            for batch_id in repository.next_available_ids(now=now, limit=_CLAIM_SCAN_LIMIT):
                if not repository.try_claim(batch_id=batch_id, worker_id=worker_id, now=now):
                    # Another worker took it first.
                    continue
                row = repository.get(batch_id)
                db.commit()
                if row is None:
                    return None
                return ClaimedBatch.from_row(row)
        return None

    def complete(self, batch_id: uuid.UUID) -> bool:
        with self._session_factory() as db:
            completed = self._repository(db).set_status(
                batch_id=batch_id,
                from_status=QueuedBatchStatus.ACTIVE,
                to_status=QueuedBatchStatus.COMPLETED,
                finished_at=self._clock(),
                locked_by=None,
            )
            db.commit()
        if not completed:
            logger.warning("Batch completion ignored; lease no longer held batch_id=%s", batch_id)
        return completed

    def fail(self, batch_id: uuid.UUID, error: str) -> bool:
        """
        Record a failed attempt. Returns True when no attempts remain and the batch is now failed.
        """

        now = self._clock()
        with self._session_factory() as db:
            repository = self._repository(db)
            row = repository.get(batch_id)
            if row is None or row.status != QueuedBatchStatus.ACTIVE:
                logger.warning("Batch failure ignored; lease no longer held batch_id=%s", batch_id)
                return False

            if row.attempts_made >= row.max_attempts:
                exhausted = repository.set_status(
                    batch_id=batch_id,
                    from_status=QueuedBatchStatus.ACTIVE,
                    to_status=QueuedBatchStatus.FAILED,
                    finished_at=now,
                    locked_by=None,
                    last_error=error[:2000],
                )
                db.commit()
                if exhausted:
                    logger.error(
                        "Batch failed permanently batch_id=%s run_id=%s attempts=%s error=%s",
                        batch_id,
                        row.import_run_id,
                        row.attempts_made,
                        error,
                    )
                return exhausted

            delay_seconds = self.backoff_delay(row.backoff_delay_seconds, row.attempts_made)
            repository.set_status(
                batch_id=batch_id,
                from_status=QueuedBatchStatus.ACTIVE,
                to_status=QueuedBatchStatus.WAITING,
                available_at=now + timedelta(seconds=delay_seconds),
                locked_by=None,
                locked_at=None,
                last_error=error[:2000],
            )
            db.commit()

        logger.warning(
            "Batch attempt failed batch_id=%s attempt=%s/%s retry_in_seconds=%.2f error=%s",
            batch_id,
            row.attempts_made,
            row.max_attempts,
            delay_seconds,
            error,
        )
        return False

    def release_stale(self, lease_timeout_seconds: int | None = None) -> list[ClaimedBatch]:
        """
        Return batches whose worker lease expired to the waiting state.

        Batches that already used their last attempt are failed instead and
        returned, so the caller can account for them on their run.
        """

        timeout = lease_timeout_seconds or self._settings.lease_timeout_seconds
        now = self._clock()
        exhausted: list[ClaimedBatch] = []
        released = 0

        with self._session_factory() as db:
            repository = self._repository(db)
            for row in repository.list_stale_active(locked_before=now - timedelta(seconds=timeout)):
                if row.attempts_made >= row.max_attempts:
                    if repository.set_status(
                        batch_id=row.id,
                        from_status=QueuedBatchStatus.ACTIVE,
                        to_status=QueuedBatchStatus.FAILED,
                        finished_at=now,
                        locked_by=None,
                        last_error="Worker lease expired",
                    ):
                        exhausted.append(ClaimedBatch.from_row(row))
                elif repository.set_status(
                    batch_id=row.id,
                    from_status=QueuedBatchStatus.ACTIVE,
                    to_status=QueuedBatchStatus.WAITING,
                    available_at=now,
                    locked_by=None,
                    locked_at=None,
                    last_error="Worker lease expired",
                ):
                    released += 1
            db.commit()

        if released or exhausted:
            logger.warning(
                "Stale batches recovered queue=%s released=%s exhausted=%s",
                self.name,
                released,
                len(exhausted),
            )
        return exhausted

    def stats(self) -> QueueStats:
        with self._session_factory() as db:
            counts = self._repository(db).count_by_status()
        return QueueStats(
            waiting=counts.get(QueuedBatchStatus.WAITING, 0),
            active=counts.get(QueuedBatchStatus.ACTIVE, 0),
            completed=counts.get(QueuedBatchStatus.COMPLETED, 0),
            failed=counts.get(QueuedBatchStatus.FAILED, 0),
        )

    def remove_by_run_id(self, run_id: uuid.UUID) -> int:
        with self._session_factory() as db:
            removed = self._repository(db).delete_by_run_id(run_id)
            db.commit()
        if removed:
            logger.info("Queued batches removed run_id=%s count=%s", run_id, removed)
        return removed

    def drain_all(self) -> int:
        with self._session_factory() as db:
            removed = self._repository(db).delete_all()
            db.commit()
        logger.info("Queue drained queue=%s removed=%s", self.name, removed)
        return removed

    @staticmethod
    def backoff_delay(base_delay_seconds: float, attempts_made: int) -> float:
        return base_delay_seconds * (2 ** max(0, attempts_made - 1))

    def _repository(self, db: Session) -> QueuedBatchRepository:
        return QueuedBatchRepository(db, queue_name=self._settings.queue_name)
