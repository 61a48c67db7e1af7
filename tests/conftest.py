"""
tests/conftest.py

Shared fixtures: a file-backed SQLite database per test and a controllable clock.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session, sessionmaker

import db.models  # noqa: F401  registers all ORM models on Base.metadata
from app.config import QueueSettings, TrackerSettings
from app.domain.job_import import NormalizedJobRecord
from app.services.import_run_tracker import ImportRunTracker
from app.services.work_queue import WorkQueue
from db.base import Base
from db.session import create_db_engine, create_session_factory


class FakeClock:
    """Deterministic clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def session_factory(tmp_path) -> Iterator[sessionmaker[Session]]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    try:
        yield create_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def tracker_settings() -> TrackerSettings:
    return TrackerSettings(stuck_run_threshold_minutes=5, stalled_run_fail_after_minutes=0)


@pytest.fixture()
def tracker(session_factory, tracker_settings, clock) -> ImportRunTracker:
    return ImportRunTracker(session_factory=session_factory, settings=tracker_settings, clock=clock)


@pytest.fixture()
def queue_settings() -> QueueSettings:
    # Zero backoff keeps retried batches immediately claimable.
    return QueueSettings(
        queue_name="test-queue",
        max_attempts=3,
        backoff_delay_seconds=0.0,
        lease_timeout_seconds=60,
    )


@pytest.fixture()
def work_queue(session_factory, queue_settings, clock) -> WorkQueue:
    return WorkQueue(session_factory=session_factory, settings=queue_settings, clock=clock)


def make_record(index: int, **overrides: object) -> NormalizedJobRecord:
    values: dict[str, object] = {
        "external_id": f"job{index}",
        "title": f"Engineer {index}",
        "company": "Acme",
        "location": "Remote",
        "description": "Build things",
        "url": f"https://example.com/jobs/{index}",
    }
    values.update(overrides)
    return NormalizedJobRecord(**values)  # type: ignore[arg-type]


@pytest.fixture()
def record_factory():
    return make_record
