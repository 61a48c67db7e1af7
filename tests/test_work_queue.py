"""
tests/test_work_queue.py

Coverage
--------
- enqueue_many persists batches with payload and retry settings
- claim leases the oldest due batch once
- complete / fail transitions, exponential backoff, exhaustion
- release_stale for expired leases
- stats, remove_by_run_id, drain_all
"""

from __future__ import annotations

import uuid

from app.config import QueueSettings
from app.domain.job_import import ImportBatch
from app.services.work_queue import WorkQueue
from db.models.queued_batch import QueuedBatch

SOURCE = "https://jobicy.com/?feed=job_feed"


def _batches(record_factory, run_id: uuid.UUID, count: int, size: int = 2) -> list[ImportBatch]:
    return [
        ImportBatch(
            source_url=SOURCE,
            import_run_id=run_id,
            batch_index=index,
            jobs=[record_factory(index * size + offset) for offset in range(size)],
        )
        for index in range(count)
    ]


class TestEnqueueAndClaim:
    def test_claim_returns_enqueued_batch(self, work_queue: WorkQueue, record_factory) -> None:
        run_id = uuid.uuid4()
        ids = work_queue.enqueue_many(_batches(record_factory, run_id, 1))

        claimed = work_queue.claim("worker-a")

        assert claimed is not None
        assert claimed.id == ids[0]
        assert claimed.import_run_id == run_id
        assert claimed.batch_index == 0
        assert [job.external_id for job in claimed.jobs] == ["job0", "job1"]
        assert claimed.attempts_made == 1
        assert claimed.max_attempts == 3
        assert work_queue.claim("worker-b") is None

    def test_claims_in_batch_order(self, work_queue: WorkQueue, record_factory) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 3))
        indexes = [work_queue.claim("worker").batch_index for _ in range(3)]
        assert indexes == [0, 1, 2]

    def test_enqueue_many_empty_is_noop(self, work_queue: WorkQueue) -> None:
        assert work_queue.enqueue_many([]) == []
        assert work_queue.stats().waiting == 0

    def test_published_date_round_trips_through_payload(self, work_queue: WorkQueue, record_factory, clock) -> None:
        batch = ImportBatch(
            source_url=SOURCE,
            import_run_id=uuid.uuid4(),
            batch_index=0,
            jobs=[record_factory(1, published_date=clock.now)],
        )
        work_queue.enqueue(batch)
        assert work_queue.claim("worker").jobs[0].published_date == clock.now


class TestSettlement:
    def test_complete(self, work_queue: WorkQueue, record_factory) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))
        claimed = work_queue.claim("worker")

        assert work_queue.complete(claimed.id)
        assert not work_queue.complete(claimed.id)
        stats = work_queue.stats()
        assert (stats.waiting, stats.active, stats.completed) == (0, 0, 1)

    def test_fail_retries_until_exhausted(self, work_queue: WorkQueue, record_factory) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))

        outcomes = []
        for _ in range(3):
            claimed = work_queue.claim("worker")
            outcomes.append(work_queue.fail(claimed.id, "boom"))

        assert outcomes == [False, False, True]
        assert work_queue.claim("worker") is None
        assert work_queue.stats().failed == 1

    def test_fail_applies_exponential_backoff(self, session_factory, clock, record_factory) -> None:
        queue = WorkQueue(
            session_factory=session_factory,
            settings=QueueSettings(queue_name="backoff", max_attempts=3, backoff_delay_seconds=2.0),
            clock=clock,
        )
        queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))

        queue.fail(queue.claim("worker").id, "first")
        assert queue.claim("worker") is None
        clock.advance(seconds=2)
        second = queue.claim("worker")
        assert second is not None

        queue.fail(second.id, "second")
        clock.advance(seconds=3)
        assert queue.claim("worker") is None
        clock.advance(seconds=1)
        assert queue.claim("worker").attempts_made == 3

    def test_backoff_delay_doubles(self) -> None:
        assert [WorkQueue.backoff_delay(2.0, attempt) for attempt in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestStaleLeases:
    def test_expired_lease_returns_to_waiting(self, work_queue: WorkQueue, record_factory, clock) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))
        work_queue.claim("crashed-worker")
        clock.advance(seconds=61)

        exhausted = work_queue.release_stale()

        assert exhausted == []
        reclaimed = work_queue.claim("worker")
        assert reclaimed is not None
        assert reclaimed.attempts_made == 2

    def test_expired_final_attempt_is_reported(self, work_queue: WorkQueue, record_factory, clock) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))
        for _ in range(2):
            work_queue.fail(work_queue.claim("worker").id, "boom")
        work_queue.claim("crashed-worker")
        clock.advance(seconds=61)

        exhausted = work_queue.release_stale()

        assert len(exhausted) == 1
        assert exhausted[0].batch_index == 0
        assert work_queue.stats().failed == 1

    def test_fresh_lease_is_kept(self, work_queue: WorkQueue, record_factory, clock) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))
        work_queue.claim("worker")
        clock.advance(seconds=10)

        work_queue.release_stale()

        assert work_queue.stats().active == 1


class TestMaintenance:
    def test_remove_by_run_id_only_touches_that_run(self, work_queue: WorkQueue, record_factory, session_factory) -> None:
        doomed = uuid.uuid4()
        kept = uuid.uuid4()
        work_queue.enqueue_many(_batches(record_factory, doomed, 3))
        work_queue.enqueue_many(_batches(record_factory, kept, 2))

        assert work_queue.remove_by_run_id(doomed) == 3

        with session_factory() as db:
            remaining = {row.import_run_id for row in db.query(QueuedBatch).all()}
        assert remaining == {kept}

    def test_drain_all(self, work_queue: WorkQueue, record_factory) -> None:
        work_queue.enqueue_many(_batches(record_factory, uuid.uuid4(), 2))
        work_queue.claim("worker")

        assert work_queue.drain_all() == 2
        stats = work_queue.stats()
        assert (stats.waiting, stats.active, stats.completed, stats.failed) == (0, 0, 0, 0)

    def test_queues_are_isolated_by_name(self, session_factory, work_queue: WorkQueue, record_factory) -> None:
        other = WorkQueue(session_factory=session_factory, settings=QueueSettings(queue_name="other"))
        other.enqueue_many(_batches(record_factory, uuid.uuid4(), 1))

        assert work_queue.claim("worker") is None
        assert other.stats().waiting == 1
        assert work_queue.stats().waiting == 0
