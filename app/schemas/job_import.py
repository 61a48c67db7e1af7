"""
Schemas for job import trigger, history and queue endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class TriggerResultResponse(BaseModel):
    source_url: str
    started: bool
    message: str
    run_id: UUID | None = None


class TriggerAllResponse(BaseModel):
    started: bool
    message: str
    scheduled: int
    already_running: int
    results: list[TriggerResultResponse] = Field(default_factory=list)


class ImportRunResponse(BaseModel):
    id: UUID
    file_name: str
    source_url: str
    timestamp: datetime
    total: int
    new: int
    updated: int
    failed: int
    failed_reasons: list[dict[str, Any]] = Field(default_factory=list)
    status: str
    processing_time_ms: int | None = None
    total_batches: int
    completed_batches: int
    error_message: str | None = None


class PaginationResponse(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class ImportHistoryResponse(BaseModel):
    data: list[ImportRunResponse] = Field(default_factory=list)
    pagination: PaginationResponse


class DeleteRunResponse(BaseModel):
    deleted: bool
    run_id: UUID


class DeleteAllRunsResponse(BaseModel):
    deleted: int


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
