"""
app/repositories package marker.
"""

from app.repositories.job_posting_repository import (
    JobPersistenceUnavailableError,
    JobPostingRepository,
    JobUpsertResult,
)

__all__ = [
    "JobPersistenceUnavailableError",
    "JobPostingRepository",
    "JobUpsertResult",
]
