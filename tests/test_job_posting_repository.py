"""
tests/test_job_posting_repository.py

Coverage
--------
- First upsert inserts, second upsert of the same natural key updates
- Same external id under a different source is a separate posting
- Duplicate records within one batch
- Tracker counters reflect new=1, updated=1 across two submissions
"""

from __future__ import annotations

from sqlalchemy import func, select

from app.domain.job_import import BatchStats
from app.repositories.job_posting_repository import JobPostingRepository
from app.services.import_run_tracker import ImportRunTracker
from db.models.job_posting import JobPosting

SOURCE = "https://jobicy.com/?feed=job_feed"


def _count(session_factory) -> int:
    with session_factory() as db:
        return db.scalar(select(func.count()).select_from(JobPosting))


class TestUpsertMany:
    def test_insert_then_update_same_natural_key(self, session_factory, record_factory) -> None:
        with session_factory() as db:
            first = JobPostingRepository(db).upsert_many([record_factory(1)], source_url=SOURCE)
        with session_factory() as db:
            second = JobPostingRepository(db).upsert_many(
                [record_factory(1, title="Senior Engineer", company="Acme Corp")],
                source_url=SOURCE,
            )

        assert (first.new_count, first.updated_count) == (1, 0)
        assert (second.new_count, second.updated_count) == (0, 1)
        assert _count(session_factory) == 1

        with session_factory() as db:
            posting = JobPostingRepository(db).get_by_natural_key(external_id="job1", source_url=SOURCE)
        assert posting is not None
        assert posting.title == "Senior Engineer"
        assert posting.company == "Acme Corp"

    def test_same_external_id_under_other_source_is_new(self, session_factory, record_factory) -> None:
        with session_factory() as db:
            repository = JobPostingRepository(db)
            repository.upsert_many([record_factory(1)], source_url=SOURCE)
            result = repository.upsert_many([record_factory(1)], source_url="https://other.example/feed")

        assert result.new_count == 1
        assert _count(session_factory) == 2

    def test_duplicates_within_batch(self, session_factory, record_factory) -> None:
        records = [record_factory(1), record_factory(2), record_factory(1, title="Changed")]
        with session_factory() as db:
            result = JobPostingRepository(db).upsert_many(records, source_url=SOURCE)

        assert (result.new_count, result.updated_count) == (2, 1)
        assert result.failures == []
        assert _count(session_factory) == 2

    def test_run_counters_across_two_submissions(
        self,
        session_factory,
        tracker: ImportRunTracker,
        record_factory,
    ) -> None:
        run_id = tracker.create(SOURCE, total_batches=2)
        for batch_index, title in enumerate(["Engineer", "Staff Engineer"]):
            with session_factory() as db:
                result = JobPostingRepository(db).upsert_many(
                    [record_factory(7, title=title)],
                    source_url=SOURCE,
                )
            tracker.update_counts(
                run_id,
                BatchStats(new=result.new_count, updated=result.updated_count),
                batch_index=batch_index,
            )

        run = tracker.get(run_id)
        assert (run.new, run.updated) == (1, 1)
        assert _count(session_factory) == 1
