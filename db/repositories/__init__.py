"""
Repository layer exports.
"""

from db.repositories.import_run_repository import (
    ImportRunRepository,
    RunAlreadyActiveError,
    file_name_from_url,
)
from db.repositories.queued_batch_repository import QueuedBatchRepository

__all__ = [
    "ImportRunRepository",
    "QueuedBatchRepository",
    "RunAlreadyActiveError",
    "file_name_from_url",
]
