"""
app/services/batch_worker.py

Batch workers: apply queued batches to job postings and report to the run tracker.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from sqlalchemy.orm import Session, sessionmaker

from app.config import WorkerSettings, get_worker_settings
from app.domain.job_import import BatchStats, FailedReason
from app.failure_codes import BATCH_RETRIES_EXHAUSTED
from app.repositories.job_posting_repository import (
    JobPersistenceUnavailableError,
    JobPostingRepository,
)
from app.services.import_run_tracker import ImportRunTracker, StorageUnavailableError
from app.services.work_queue import ClaimedBatch, WorkQueue

logger = logging.getLogger(__name__)


class BatchProcessingError(RuntimeError):
    """
    Raised when a batch could not be applied as a whole and should be retried.
    """


class BatchWorker:
    """
    Processes one claimed batch at a time.

    The worker never completes a run itself; it reports counts and batch
    completions and lets the tracker decide when the run is finished.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        tracker: ImportRunTracker | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import get_session_factory

            self._session_factory = get_session_factory()
        else:
            self._session_factory = session_factory
        self._tracker = tracker or ImportRunTracker(session_factory=self._session_factory)

    def process(self, batch: ClaimedBatch) -> BatchStats:
        logger.info(
            "Processing batch run_id=%s batch=%s jobs=%s attempt=%s/%s source=%s",
            batch.import_run_id,
            batch.batch_index,
            len(batch.jobs),
            batch.attempts_made,
            batch.max_attempts,
            batch.source_url,
        )

        with self._session_factory() as db:
            try:
                result = JobPostingRepository(db).upsert_many(batch.jobs, source_url=batch.source_url)
            except JobPersistenceUnavailableError as exc:
                raise BatchProcessingError(str(exc)) from exc

        stats = BatchStats(
            new=result.new_count,
            updated=result.updated_count,
            failed=len(result.failures),
            failed_reasons=list(result.failures),
        )
        try:
            self._tracker.update_counts(batch.import_run_id, stats, batch_index=batch.batch_index)
            self._tracker.record_batch_completion(batch.import_run_id, batch.batch_index)
        except StorageUnavailableError as exc:
            # Jobs are stored; the repair sweep reconciles the run.
            logger.warning(
                "Run tracker update failed run_id=%s batch=%s error=%s",
                batch.import_run_id,
                batch.batch_index,
                exc,
            )
        return stats

    def handle_exhausted(self, batch: ClaimedBatch, error: str) -> None:
        """
        Count every record of a batch that ran out of attempts as failed, and fail its run.
        """

        logger.error(
            "Batch exhausted retries run_id=%s batch=%s jobs=%s error=%s",
            batch.import_run_id,
            batch.batch_index,
            len(batch.jobs),
            error,
        )
        self._tracker.update_counts(
            batch.import_run_id,
            BatchStats(failed=len(batch.jobs)),
            batch_index=batch.batch_index,
        )
        self._tracker.mark_failed(
            batch.import_run_id,
            FailedReason(
                reason=BATCH_RETRIES_EXHAUSTED,
                error=f"Batch {batch.batch_index} ({len(batch.jobs)} jobs): {error}",
            ),
            batch_index=batch.batch_index,
        )

    def run_claimed(self, queue: WorkQueue, batch: ClaimedBatch) -> bool:
        """
        Process a claimed batch and settle it on the queue. Returns True on success.
        """

        try:
            self.process(batch)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Batch attempt raised run_id=%s batch=%s error=%s",
                batch.import_run_id,
                batch.batch_index,
                error,
            )
            if queue.fail(batch.id, error):
                self.handle_exhausted(batch, error)
            return False

        queue.complete(batch.id)
        return True


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def recover_stale_batches(queue: WorkQueue, worker: BatchWorker) -> int:
    """
    Release expired leases and account for batches that had no attempts left.
    """

    exhausted = queue.release_stale()
    for batch in exhausted:
        worker.handle_exhausted(batch, "Worker lease expired on final attempt")
    return len(exhausted)


class BatchWorkerPool:
    """
    Polls the queue and runs up to max_concurrency batches at once on a thread pool.
    """

    def __init__(
        self,
        *,
        queue: WorkQueue | None = None,
        worker: BatchWorker | None = None,
        settings: WorkerSettings | None = None,
        worker_id: str | None = None,
    ) -> None:
        self._queue = queue or WorkQueue()
        self._worker = worker or BatchWorker()
        self._settings = settings or get_worker_settings()
        self._worker_id = worker_id or default_worker_id()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def run_forever(self) -> None:
        max_workers = self._settings.max_concurrency
        poll_seconds = self._settings.poll_interval_seconds
        logger.info(
            "Batch worker pool started worker_id=%s queue=%s concurrency=%s",
            self._worker_id,
            self._queue.name,
            max_workers,
        )

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="batch-worker") as executor:
            futures: set[Future[bool]] = set()
            while not self._stop_event.is_set():
                while len(futures) < max_workers and not self._stop_event.is_set():
                    try:
                        batch = self._queue.claim(self._worker_id)
                    except Exception:
                        logger.exception("Queue claim failed worker_id=%s", self._worker_id)
                        batch = None
                    if batch is None:
                        break
                    futures.add(executor.submit(self._worker.run_claimed, self._queue, batch))

                if futures:
                    done, futures = wait(futures, timeout=poll_seconds, return_when=FIRST_COMPLETED)
                    for future in done:
                        try:
                            future.result()
                        except Exception:
                            logger.exception("Batch worker thread error worker_id=%s", self._worker_id)
                else:
                    self._stop_event.wait(poll_seconds)

            if futures:
                wait(futures)

        logger.info("Batch worker pool stopped worker_id=%s", self._worker_id)

    def run_until_idle(self) -> int:
        """
        Process batches sequentially until nothing is due. Returns how many were handled.
        """

        handled = 0
        while True:
            batch = self._queue.claim(self._worker_id)
            if batch is None:
                return handled
            self._worker.run_claimed(self._queue, batch)
            handled += 1

    def recover_stale(self) -> int:
        return recover_stale_batches(self._queue, self._worker)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            name="batch-worker-pool",
            daemon=True,
        )
        self._thread.start()

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self, timeout: float | None = 30.0) -> None:
        self.request_stop()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
