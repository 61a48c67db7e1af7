"""
app/repositories/job_posting_repository.py

Idempotent upsert of job postings keyed by (external_id, source_url).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.job_import import FailedReason, NormalizedJobRecord
from app.failure_codes import DATABASE_ERROR
from db.base import utcnow
from db.models.job_posting import JobPosting
from db.repositories.dialect import insert_for

logger = logging.getLogger(__name__)

_NATURAL_KEY = ["external_id", "source_url"]


class JobPersistenceUnavailableError(RuntimeError):
    """
    Raised when the database is unreachable, so no record in the batch can be applied.
    """


@dataclass(frozen=True)
class JobUpsertResult:
    new_count: int = 0
    updated_count: int = 0
    failures: list[FailedReason] = field(default_factory=list)


class JobPostingRepository:
    """
    Persistence gateway for job postings.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def upsert_many(
        self,
        records: Sequence[NormalizedJobRecord],
        *,
        source_url: str,
    ) -> JobUpsertResult:
        """
        Insert new postings and overwrite existing ones, one short transaction per record.

        Per-record database errors are collected as failures; connectivity
        errors abort the batch so the queue can retry it.
        """

        new_count = 0
        updated_count = 0
        failures: list[FailedReason] = []

        for record in records:
            try:
                if self._upsert_one(record, source_url=source_url):
                    new_count += 1
                else:
                    updated_count += 1
                self._session.commit()
            except OperationalError as exc:
                self._session.rollback()
                raise JobPersistenceUnavailableError(
                    f"Job posting store unavailable while writing {record.external_id}"
                ) from exc
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.warning(
                    "Job posting upsert failed external_id=%s source=%s error=%s",
                    record.external_id,
                    source_url,
                    exc,
                )
                failures.append(
                    FailedReason(
                        reason=DATABASE_ERROR,
                        item_id=record.external_id,
                        error=str(exc)[:500],
                    )
                )

        return JobUpsertResult(
            new_count=new_count,
            updated_count=updated_count,
            failures=failures,
        )

    def get_by_natural_key(self, *, external_id: str, source_url: str) -> JobPosting | None:
        stmt = select(JobPosting).where(
            JobPosting.external_id == external_id,
            JobPosting.source_url == source_url,
        )
        return self._session.scalars(stmt.execution_options(populate_existing=True)).first()

    def _upsert_one(self, record: NormalizedJobRecord, *, source_url: str) -> bool:
        """
        Return True when the posting was inserted, False when an existing row was updated.
        """

        fields = self._mutable_fields(record)
        insert_stmt = (
            insert_for(self._session, JobPosting)
            .values(external_id=record.external_id, source_url=source_url, **fields)
            .on_conflict_do_nothing(index_elements=_NATURAL_KEY)
        )
        if self._session.execute(insert_stmt).rowcount == 1:
            return True

        self._session.execute(
            update(JobPosting)
            .where(
                JobPosting.external_id == record.external_id,
                JobPosting.source_url == source_url,
            )
            .values(updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        return False

    @staticmethod
    def _mutable_fields(record: NormalizedJobRecord) -> dict[str, Any]:
        return {
            "title": record.title,
            "company": record.company,
            "location": record.location,
            "description": record.description,
            "url": record.url,
            "category": record.category,
            "job_type": record.job_type,
            "region": record.region,
            "published_date": record.published_date,
        }
