"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

DEFAULT_FEED_URLS: tuple[str, ...] = (
    "https://jobicy.com/?feed=job_feed",
    "https://jobicy.com/?feed=job_feed&job_categories=smm&job_types=full-time",
    "https://jobicy.com/?feed=job_feed&job_categories=seller&job_types=full-time&search_region=france",
    "https://jobicy.com/?feed=job_feed&job_categories=design-multimedia",
    "https://jobicy.com/?feed=job_feed&job_categories=data-science",
    "https://jobicy.com/?feed=job_feed&job_categories=copywriting",
    "https://jobicy.com/?feed=job_feed&job_categories=business",
    "https://jobicy.com/?feed=job_feed&job_categories=management",
    "https://www.higheredjobs.com/rss/articleFeed.cfm",
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a comma-separated list, dropping blank entries.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    items = tuple(item.strip() for item in raw_value.split(",") if item.strip())
    return items if items else default


@dataclass(frozen=True)
class FeedSourceSettings:
    """
    Feed sources imported by trigger-all and the hourly cron.
    """

    urls: tuple[str, ...] = DEFAULT_FEED_URLS


@dataclass(frozen=True)
class FeedFetchSettings:
    """
    HTTP behavior for raw feed retrieval.
    """

    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(frozen=True)
class BatchSettings:
    """
    Per-source batch sizing policy.
    """

    default_batch_size: int = 100
    large_feed_batch_size: int = 400
    large_feed_hosts: tuple[str, ...] = ("higheredjobs.com",)


@dataclass(frozen=True)
class QueueSettings:
    """
    Durable work queue delivery and retry settings.
    """

    queue_name: str = "job-import-queue"
    max_attempts: int = 3
    backoff_delay_seconds: float = 2.0
    lease_timeout_seconds: int = 300


@dataclass(frozen=True)
class WorkerSettings:
    """
    Batch worker pool settings.
    """

    max_concurrency: int = 5
    poll_interval_seconds: float = 1.0


@dataclass(frozen=True)
class TrackerSettings:
    """
    Import run tracker repair policy.

    stalled_run_fail_after_minutes == 0 keeps genuinely stalled runs in
    processing and only reports them.
    """

    stuck_run_threshold_minutes: int = 5
    stalled_run_fail_after_minutes: int = 0


@dataclass(frozen=True)
class SchedulerSettings:
    enabled: bool = True
    import_cron: str = "0 * * * *"
    repair_interval_seconds: int = 60
    run_embedded_worker: bool = False


@lru_cache(maxsize=1)
def get_feed_source_settings() -> FeedSourceSettings:
    """
    Return configured feed sources; JOB_FEED_URLS overrides the built-in list.
    """

    return FeedSourceSettings(urls=_get_csv_env("JOB_FEED_URLS", DEFAULT_FEED_URLS))


@lru_cache(maxsize=1)
def get_feed_fetch_settings() -> FeedFetchSettings:
    return FeedFetchSettings(
        timeout_seconds=max(1.0, _get_float_env("FEED_FETCH_TIMEOUT_SECONDS", 30.0)),
        max_retries=max(0, _get_int_env("FEED_FETCH_MAX_RETRIES", 2)),
        backoff_initial_seconds=max(0.1, _get_float_env("FEED_FETCH_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("FEED_FETCH_BACKOFF_MULTIPLIER", 2.0)),
        user_agent=_get_str_env("FEED_FETCH_USER_AGENT", DEFAULT_USER_AGENT),
    )


@lru_cache(maxsize=1)
def get_batch_settings() -> BatchSettings:
    return BatchSettings(
        default_batch_size=max(1, _get_int_env("BATCH_SIZE", 100)),
        large_feed_batch_size=max(1, _get_int_env("LARGE_FEED_BATCH_SIZE", 400)),
        large_feed_hosts=_get_csv_env("LARGE_FEED_HOSTS", ("higheredjobs.com",)),
    )


@lru_cache(maxsize=1)
def get_queue_settings() -> QueueSettings:
    return QueueSettings(
        queue_name=_get_str_env("QUEUE_NAME", "job-import-queue"),
        max_attempts=max(1, _get_int_env("QUEUE_MAX_ATTEMPTS", 3)),
        backoff_delay_seconds=max(0.0, _get_float_env("QUEUE_BACKOFF_DELAY_SECONDS", 2.0)),
        lease_timeout_seconds=max(10, _get_int_env("QUEUE_LEASE_TIMEOUT_SECONDS", 300)),
    )


@lru_cache(maxsize=1)
def get_worker_settings() -> WorkerSettings:
    return WorkerSettings(
        max_concurrency=max(1, _get_int_env("MAX_CONCURRENCY", 5)),
        poll_interval_seconds=max(0.1, _get_float_env("WORKER_POLL_INTERVAL_SECONDS", 1.0)),
    )


@lru_cache(maxsize=1)
def get_tracker_settings() -> TrackerSettings:
    return TrackerSettings(
        stuck_run_threshold_minutes=max(1, _get_int_env("STUCK_RUN_THRESHOLD_MINUTES", 5)),
        stalled_run_fail_after_minutes=max(0, _get_int_env("STALLED_RUN_FAIL_AFTER_MINUTES", 0)),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        import_cron=_get_str_env("JOB_FETCH_CRON", "0 * * * *"),
        repair_interval_seconds=max(5, _get_int_env("REPAIR_SWEEP_INTERVAL_SECONDS", 60)),
        run_embedded_worker=_get_bool_env("RUN_EMBEDDED_WORKER", False),
    )
