"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.import_run import ImportRun, ImportRunBatchEventRecord
from db.models.job_posting import JobPosting
from db.models.queued_batch import QueuedBatch

__all__ = [
    "ImportRun",
    "ImportRunBatchEventRecord",
    "JobPosting",
    "QueuedBatch",
]
