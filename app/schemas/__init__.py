"""
app/schemas package marker.
"""

from app.schemas.job_import import (
    DeleteAllRunsResponse,
    DeleteRunResponse,
    ImportHistoryResponse,
    ImportRunResponse,
    PaginationResponse,
    QueueStatsResponse,
    TriggerAllResponse,
    TriggerResultResponse,
)

__all__ = [
    "DeleteAllRunsResponse",
    "DeleteRunResponse",
    "ImportHistoryResponse",
    "ImportRunResponse",
    "PaginationResponse",
    "QueueStatsResponse",
    "TriggerAllResponse",
    "TriggerResultResponse",
]
