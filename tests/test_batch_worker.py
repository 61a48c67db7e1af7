"""
tests/test_batch_worker.py

Coverage
--------
- A processed batch upserts postings, reports counts and completes the run
- Redelivered batch does not double count
- Exhausted retries: run failed, every record of the batch counted failed
- Stale lease on the final attempt is accounted for on the run
- Tracker storage errors after a successful upsert leave the run processing
- Pool run_until_idle drains a multi-batch run to completion
- Pool run_forever on its own thread: bounded concurrency, drain, stop
"""

from __future__ import annotations

import threading
import time
import uuid

import pytest

from app.config import WorkerSettings
from app.domain.job_import import ImportBatch
from app.failure_codes import BATCH_RETRIES_EXHAUSTED
from app.repositories.job_posting_repository import (
    JobPersistenceUnavailableError,
    JobPostingRepository,
)
from app.services.batch_worker import BatchWorker, BatchWorkerPool, recover_stale_batches
from app.services.import_run_tracker import ImportRunTracker, StorageUnavailableError
from app.services.work_queue import WorkQueue
from db.models.import_run import ImportRunStatus

SOURCE = "https://jobicy.com/?feed=job_feed"


@pytest.fixture()
def worker(session_factory, tracker: ImportRunTracker) -> BatchWorker:
    return BatchWorker(session_factory=session_factory, tracker=tracker)


@pytest.fixture()
def pool(work_queue: WorkQueue, worker: BatchWorker) -> BatchWorkerPool:
    return BatchWorkerPool(
        queue=work_queue,
        worker=worker,
        settings=WorkerSettings(max_concurrency=2, poll_interval_seconds=0.1),
        worker_id="test-worker",
    )


def _enqueue_run(
    tracker: ImportRunTracker,
    work_queue: WorkQueue,
    record_factory,
    *,
    record_count: int,
    batch_size: int,
) -> uuid.UUID:
    records = [record_factory(index) for index in range(record_count)]
    chunks = [records[start : start + batch_size] for start in range(0, record_count, batch_size)]
    run_id = tracker.create(SOURCE, total=record_count, total_batches=len(chunks))
    work_queue.enqueue_many(
        [
            ImportBatch(source_url=SOURCE, import_run_id=run_id, batch_index=index, jobs=chunk)
            for index, chunk in enumerate(chunks)
        ]
    )
    return run_id


def _fail_all_upserts(monkeypatch) -> None:
    def _unavailable(self, records, *, source_url):
        raise JobPersistenceUnavailableError("Job posting store unavailable")

    monkeypatch.setattr(JobPostingRepository, "upsert_many", _unavailable)


class ConcurrencyRecordingWorker(BatchWorker):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.handled = 0

    def run_claimed(self, queue: WorkQueue, batch) -> bool:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(0.05)
            return super().run_claimed(queue, batch)
        finally:
            with self._lock:
                self.active -= 1
                self.handled += 1


class TestProcess:
    def test_single_batch_completes_run(self, tracker, work_queue, worker, record_factory) -> None:
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=3, batch_size=10)

        batch = work_queue.claim("test-worker")
        assert worker.run_claimed(work_queue, batch)

        run = tracker.get(run_id)
        assert run.status == ImportRunStatus.COMPLETED
        assert (run.new, run.updated, run.failed) == (3, 0, 0)
        assert run.completed_batches == 1
        assert work_queue.stats().completed == 1

    def test_redelivered_batch_counts_once(self, tracker, work_queue, worker, record_factory) -> None:
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=4, batch_size=2)

        batch = work_queue.claim("test-worker")
        worker.process(batch)
        worker.process(batch)

        run = tracker.get(run_id)
        assert run.new == 2
        assert run.completed_batches == 1
        assert run.status == ImportRunStatus.PROCESSING


class TestRetriesExhausted:
    def test_exhausted_batch_fails_run(self, tracker, work_queue, pool, record_factory, monkeypatch) -> None:
        _fail_all_upserts(monkeypatch)
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=10, batch_size=10)

        handled = pool.run_until_idle()

        run = tracker.get(run_id)
        assert handled == 3
        assert run.status == ImportRunStatus.FAILED
        assert run.failed == 10
        assert run.completed_batches == 1
        assert run.failed_reasons[-1]["reason"] == BATCH_RETRIES_EXHAUSTED
        assert "Batch 0 (10 jobs)" in run.failed_reasons[-1]["error"]
        assert work_queue.stats().failed == 1

    def test_transient_failure_then_success(self, tracker, work_queue, pool, record_factory, monkeypatch) -> None:
        original = JobPostingRepository.upsert_many
        calls = {"count": 0}

        def _flaky(self, records, *, source_url):
            calls["count"] += 1
            if calls["count"] == 1:
                raise JobPersistenceUnavailableError("connection reset")
            return original(self, records, source_url=source_url)

        monkeypatch.setattr(JobPostingRepository, "upsert_many", _flaky)
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=2, batch_size=5)

        assert pool.run_until_idle() == 2

        run = tracker.get(run_id)
        assert run.status == ImportRunStatus.COMPLETED
        assert (run.new, run.failed) == (2, 0)


class TestTrackerUnavailable:
    def test_storage_error_leaves_run_processing(
        self,
        tracker,
        work_queue,
        pool,
        record_factory,
        monkeypatch,
    ) -> None:
        def _unavailable(self, run_id, batch_index=None):
            raise StorageUnavailableError("Import run update failed: database is locked")

        monkeypatch.setattr(ImportRunTracker, "record_batch_completion", _unavailable)
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=4, batch_size=4)

        assert pool.run_until_idle() == 1

        run = tracker.get(run_id)
        assert run.status == ImportRunStatus.PROCESSING
        assert (run.new, run.failed) == (4, 0)
        assert run.failed_reasons == []
        stats = work_queue.stats()
        assert (stats.completed, stats.failed) == (1, 0)


class TestStaleRecovery:
    def test_expired_final_attempt_fails_run(
        self,
        tracker,
        work_queue,
        worker,
        record_factory,
        clock,
    ) -> None:
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=4, batch_size=4)
        for _ in range(2):
            work_queue.fail(work_queue.claim("test-worker").id, "boom")
        # Final attempt claimed by a worker that never reports back.
        work_queue.claim("crashed-worker")
        clock.advance(seconds=61)

        assert recover_stale_batches(work_queue, worker) == 1

        run = tracker.get(run_id)
        assert run.status == ImportRunStatus.FAILED
        assert run.failed == 4
        assert run.failed_reasons[-1]["reason"] == BATCH_RETRIES_EXHAUSTED


class TestPool:
    def test_run_until_idle_completes_multi_batch_run(self, tracker, work_queue, pool, record_factory) -> None:
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=25, batch_size=10)

        assert pool.run_until_idle() == 3

        run = tracker.get(run_id)
        assert run.status == ImportRunStatus.COMPLETED
        assert run.new == 25
        assert run.completed_batches == run.total_batches == 3

    def test_worker_id(self, pool: BatchWorkerPool) -> None:
        assert pool.worker_id == "test-worker"

    def test_run_forever_drains_with_bounded_concurrency(
        self,
        session_factory,
        tracker,
        work_queue,
        record_factory,
    ) -> None:
        worker = ConcurrencyRecordingWorker(session_factory=session_factory, tracker=tracker)
        pool = BatchWorkerPool(
            queue=work_queue,
            worker=worker,
            settings=WorkerSettings(max_concurrency=2, poll_interval_seconds=0.05),
            worker_id="threaded-worker",
        )
        run_id = _enqueue_run(tracker, work_queue, record_factory, record_count=12, batch_size=2)

        pool.start()
        try:
            deadline = time.monotonic() + 20
            while tracker.get(run_id).status == ImportRunStatus.PROCESSING and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            pool.stop(timeout=10)

        run = tracker.get(run_id)
        assert run.status == ImportRunStatus.COMPLETED
        assert run.new == 12
        assert run.completed_batches == run.total_batches == 6
        assert worker.handled == 6
        assert 1 <= worker.peak <= 2
        assert work_queue.stats().completed == 6
        assert not any(thread.name == "batch-worker-pool" for thread in threading.enumerate())
