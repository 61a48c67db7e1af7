"""
app/domain/job_import.py

Domain models for job feed import orchestration.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class NormalizedJobRecord:
    """
    One job posting produced by the feed parser.
    """

    external_id: str
    title: str
    company: str
    location: str | None = None
    description: str | None = None
    url: str | None = None
    category: str | None = None
    job_type: str | None = None
    region: str | None = None
    published_date: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "description": self.description,
            "url": self.url,
            "category": self.category,
            "job_type": self.job_type,
            "region": self.region,
            "published_date": self.published_date.isoformat() if self.published_date else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> NormalizedJobRecord:
        published_raw = payload.get("published_date")
        return cls(
            external_id=payload["external_id"],
            title=payload["title"],
            company=payload["company"],
            location=payload.get("location"),
            description=payload.get("description"),
            url=payload.get("url"),
            category=payload.get("category"),
            job_type=payload.get("job_type"),
            region=payload.get("region"),
            published_date=datetime.fromisoformat(published_raw) if published_raw else None,
        )


@dataclass(frozen=True)
class ImportBatch:
    """
    Transient unit of queued work: a slice of one run's records.
    """

    source_url: str
    import_run_id: uuid.UUID
    batch_index: int
    jobs: list[NormalizedJobRecord]


@dataclass(frozen=True)
class FailedReason:
    reason: str
    item_id: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"reason": self.reason}
        if self.item_id is not None:
            payload["item_id"] = self.item_id
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class BatchStats:
    """
    Per-batch outcome counts reported to the run tracker.
    """

    new: int = 0
    updated: int = 0
    failed: int = 0
    failed_reasons: list[FailedReason] = field(default_factory=list)


@dataclass(frozen=True)
class TriggerResult:
    source_url: str
    started: bool
    message: str
    run_id: uuid.UUID | None = None


@dataclass(frozen=True)
class TriggerSummary:
    """
    Result of triggering every configured source.
    """

    results: list[TriggerResult]

    @property
    def scheduled(self) -> int:
        return sum(1 for result in self.results if result.started)

    @property
    def already_running(self) -> int:
        return sum(1 for result in self.results if not result.started)

    @property
    def started(self) -> bool:
        return self.scheduled > 0

    @property
    def message(self) -> str:
        return (
            f"Scheduled {self.scheduled} source(s); "
            f"{self.already_running} already running."
        )


@dataclass(frozen=True)
class RepairSummary:
    """
    Outcome of one stuck-run repair sweep.
    """

    examined: int = 0
    finalized: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)
    stalled: list[uuid.UUID] = field(default_factory=list)


@dataclass(frozen=True)
class QueueStats:
    waiting: int
    active: int
    completed: int
    failed: int
