"""
app/scheduler/jobs.py

APScheduler-based scheduler for feed imports and run maintenance.

Schedule (all times UTC)
--------------------------
  feed_import           : JOB_FETCH_CRON, hourly by default
  repair_stuck_runs     : every REPAIR_SWEEP_INTERVAL_SECONDS
  recover_stale_batches : every REPAIR_SWEEP_INTERVAL_SECONDS

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import SchedulerSettings, get_scheduler_settings
from app.services.batch_worker import BatchWorker, recover_stale_batches
from app.services.import_orchestrator_service import get_import_orchestrator_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job: scheduled feed import
# ---------------------------------------------------------------------------


def run_feed_import() -> None:
    """
    Trigger every configured source; sources with a processing run are skipped.
    """
    logger.info("Scheduler: feed_import starting")
    try:
        summary = get_import_orchestrator_service().trigger_all()
    except Exception:
        logger.exception("Scheduler: feed_import failed")
        return
    logger.info(
        "Scheduler: feed_import complete scheduled=%s already_running=%s",
        summary.scheduled,
        summary.already_running,
    )


# ---------------------------------------------------------------------------
# Job: stuck run repair
# ---------------------------------------------------------------------------


def run_repair_sweep() -> None:
    try:
        summary = get_import_orchestrator_service().tracker.repair_stuck_runs()
    except Exception:
        logger.exception("Scheduler: repair_stuck_runs failed")
        return
    if summary.examined:
        logger.info(
            "Scheduler: repair_stuck_runs examined=%s finalized=%s failed=%s stalled=%s",
            summary.examined,
            len(summary.finalized),
            len(summary.failed),
            len(summary.stalled),
        )


# ---------------------------------------------------------------------------
# Job: expired batch leases
# ---------------------------------------------------------------------------


def run_stale_batch_recovery() -> None:
    try:
        orchestrator = get_import_orchestrator_service()
        exhausted = recover_stale_batches(orchestrator.queue, BatchWorker(tracker=orchestrator.tracker))
    except Exception:
        logger.exception("Scheduler: recover_stale_batches failed")
        return
    if exhausted:
        logger.warning("Scheduler: recover_stale_batches failed_batches=%s", exhausted)


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler(settings: SchedulerSettings | None = None) -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    settings = settings or get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_feed_import,
        trigger=CronTrigger.from_crontab(settings.import_cron, timezone="UTC"),
        id="feed_import",
        name="Scheduled feed import",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=600,
    )
    scheduler.add_job(
        run_repair_sweep,
        trigger="interval",
        seconds=settings.repair_interval_seconds,
        id="repair_stuck_runs",
        name="Stuck import run repair",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_stale_batch_recovery,
        trigger="interval",
        seconds=settings.repair_interval_seconds,
        id="recover_stale_batches",
        name="Expired batch lease recovery",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    return scheduler
