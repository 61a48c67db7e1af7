"""
app/domain package marker.
"""

from app.domain.job_import import (
    BatchStats,
    FailedReason,
    ImportBatch,
    NormalizedJobRecord,
    QueueStats,
    RepairSummary,
    TriggerResult,
    TriggerSummary,
)

__all__ = [
    "BatchStats",
    "FailedReason",
    "ImportBatch",
    "NormalizedJobRecord",
    "QueueStats",
    "RepairSummary",
    "TriggerResult",
    "TriggerSummary",
]
