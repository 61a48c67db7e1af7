"""
Orchestrator service for job feed imports: guard, run creation, and async setup dispatch.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import FeedSourceSettings, get_feed_source_settings
from app.connectors.feed_fetcher import FeedFetcher, FeedFetchError
from app.connectors.feed_parser import FeedParseError, JobFeedParser
from app.domain.job_import import FailedReason, QueueStats, TriggerResult, TriggerSummary
from app.failure_codes import ENQUEUE_FAILED, FETCH_FAILED, PARSE_FAILED, SETUP_FAILED
from app.services.batch_splitter import BatchSplitter
from app.services.import_run_tracker import ImportRunTracker, StorageUnavailableError
from app.services.work_queue import EnqueueError, WorkQueue
from db.models.import_run import ImportRun
from db.repositories.import_run_repository import ImportRunRepository, RunAlreadyActiveError

logger = logging.getLogger(__name__)


class ImportTaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class ThreadPoolTaskExecutor:
    """
    Runs setup tasks on a shared thread pool so sources are fetched concurrently.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="import-setup")

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._pool.submit(task, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


@dataclass(frozen=True)
class RunPage:
    items: list[ImportRun]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ImportOrchestratorService:
    """
    Public entry point for feed imports.

    Triggering returns as soon as the run record exists; fetch, parse,
    split and enqueue then run on the executor inside an error boundary
    that always ends in finalize, enqueue, or mark_failed.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        tracker: ImportRunTracker | None = None,
        queue: WorkQueue | None = None,
        fetcher: FeedFetcher | None = None,
        parser: JobFeedParser | None = None,
        splitter: BatchSplitter | None = None,
        executor: ImportTaskExecutor | None = None,
        sources: FeedSourceSettings | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import get_session_factory

            self._session_factory = get_session_factory()
        else:
            self._session_factory = session_factory

        self._tracker = tracker or ImportRunTracker(session_factory=self._session_factory)
        self._queue = queue or WorkQueue(session_factory=self._session_factory)
        self._fetcher = fetcher or FeedFetcher()
        self._parser = parser or JobFeedParser()
        self._splitter = splitter or BatchSplitter()
        self._executor = executor or ThreadPoolTaskExecutor()
        self._sources = sources or get_feed_source_settings()

    @property
    def tracker(self) -> ImportRunTracker:
        return self._tracker

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def trigger_all(self, *, executor: ImportTaskExecutor | None = None) -> TriggerSummary:
        results = [
            self.trigger_for_source(source_url, executor=executor)
            for source_url in self._sources.urls
        ]
        summary = TriggerSummary(results=results)
        logger.info(
            "Import trigger-all scheduled=%s already_running=%s",
            summary.scheduled,
            summary.already_running,
        )
        return summary

    def trigger_for_source(
        self,
        source_url: str,
        *,
        executor: ImportTaskExecutor | None = None,
    ) -> TriggerResult:
        if self._tracker.has_processing_run(source_url):
            logger.info("Import already running source=%s", source_url)
            return TriggerResult(
                source_url=source_url,
                started=False,
                message="Import already in progress for this source",
            )

        try:
            run_id = self._tracker.create(source_url)
        except RunAlreadyActiveError:
            logger.info("Import already running source=%s", source_url)
            return TriggerResult(
                source_url=source_url,
                started=False,
                message="Import already in progress for this source",
            )

        try:
            (executor or self._executor).submit(self._run_import, run_id, source_url)
        except Exception as exc:
            logger.exception("Failed to schedule import run_id=%s source=%s", run_id, source_url)
            self._tracker.mark_failed(
                run_id,
                FailedReason(reason=SETUP_FAILED, error=f"Failed to schedule import: {exc}"),
            )
            return TriggerResult(
                source_url=source_url,
                started=False,
                message="Failed to schedule import",
                run_id=run_id,
            )

        return TriggerResult(
            source_url=source_url,
            started=True,
            message="Import started",
            run_id=run_id,
        )

    def list_runs(self, *, page: int = 1, limit: int = 50) -> RunPage:
        page = max(1, page)
        limit = max(1, limit)
        with self._session_factory() as db:
            items, total = ImportRunRepository(db).list_runs(page=page, limit=limit)
        return RunPage(items=items, total=total, page=page, limit=limit)

    def get_run(self, run_id: uuid.UUID) -> ImportRun | None:
        return self._tracker.get(run_id)

    def delete_run(self, run_id: uuid.UUID) -> bool:
        """
        Purge the run's pending batches, then delete the run record.
        """

        removed = self._queue.remove_by_run_id(run_id)
        with self._session_factory() as db:
            deleted = ImportRunRepository(db).delete_run(run_id)
            db.commit()
        logger.info("Import run deleted run_id=%s deleted=%s purged_batches=%s", run_id, deleted, removed)
        return deleted

    def delete_all_runs(self) -> int:
        self._queue.drain_all()
        with self._session_factory() as db:
            deleted = ImportRunRepository(db).delete_all_runs()
            db.commit()
        logger.info("All import runs deleted count=%s", deleted)
        return deleted

    def queue_stats(self) -> QueueStats:
        return self._queue.stats()

    def _run_import(self, run_id: uuid.UUID, source_url: str) -> None:
        try:
            self._import_source(run_id, source_url)
        except FeedFetchError as exc:
            self._fail_run(run_id, source_url, FETCH_FAILED, exc)
        except FeedParseError as exc:
            self._fail_run(run_id, source_url, PARSE_FAILED, exc)
        except EnqueueError as exc:
            self._fail_run(run_id, source_url, ENQUEUE_FAILED, exc)
        except Exception as exc:
            self._fail_run(run_id, source_url, SETUP_FAILED, exc)

    def _import_source(self, run_id: uuid.UUID, source_url: str) -> None:
        raw = self._fetcher.fetch(source_url)
        records = self._parser.parse(raw)

        if not records:
            self._tracker.update_batch_count(run_id, 0, total=0)
            self._tracker.finalize(run_id)
            logger.info("Empty feed; run finalized run_id=%s source=%s", run_id, source_url)
            return

        batches = self._splitter.split(records, source_url=source_url, import_run_id=run_id)
        if not self._tracker.update_batch_count(run_id, len(batches), total=len(records)):
            logger.info("Run left processing before enqueue; skipping run_id=%s", run_id)
            return

        if not batches:
            self._tracker.finalize(run_id)
            return

        self._queue.enqueue_many(batches)
        logger.info(
            "Import enqueued run_id=%s source=%s records=%s batches=%s",
            run_id,
            source_url,
            len(records),
            len(batches),
        )

    def _fail_run(self, run_id: uuid.UUID, source_url: str, reason: str, exc: Exception) -> None:
        error_message = f"{type(exc).__name__}: {exc}"
        logger.exception("Import setup failed run_id=%s source=%s reason=%s", run_id, source_url, reason)
        try:
            self._tracker.mark_failed(run_id, FailedReason(reason=reason, error=error_message[:2000]))
        except (StorageUnavailableError, SQLAlchemyError):
            logger.exception("Failed to persist failed import state run_id=%s", run_id)


@lru_cache(maxsize=1)
def get_import_orchestrator_service() -> ImportOrchestratorService:
    return ImportOrchestratorService()
