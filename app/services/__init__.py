"""
app/services package marker.
"""

from app.services.batch_splitter import BatchSplitter, split_into_batches
from app.services.batch_worker import BatchProcessingError, BatchWorker, BatchWorkerPool
from app.services.import_orchestrator_service import (
    ImportOrchestratorService,
    get_import_orchestrator_service,
)
from app.services.import_run_tracker import ImportRunTracker, StorageUnavailableError
from app.services.work_queue import ClaimedBatch, EnqueueError, WorkQueue

__all__ = [
    "BatchProcessingError",
    "BatchSplitter",
    "BatchWorker",
    "BatchWorkerPool",
    "ClaimedBatch",
    "EnqueueError",
    "ImportOrchestratorService",
    "ImportRunTracker",
    "StorageUnavailableError",
    "WorkQueue",
    "get_import_orchestrator_service",
    "split_into_batches",
]
