"""
Import run history endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas.job_import import (
    DeleteAllRunsResponse,
    DeleteRunResponse,
    ImportHistoryResponse,
    ImportRunResponse,
    PaginationResponse,
)
from app.services.import_orchestrator_service import (
    ImportOrchestratorService,
    get_import_orchestrator_service,
)
from db.base import as_utc
from db.models.import_run import ImportRun

router = APIRouter(prefix="/api/history", tags=["import-history"])


@router.get("", response_model=ImportHistoryResponse)
def list_import_history(
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: int = Query(default=50, ge=1, le=500, description="Runs per page"),
    orchestrator: ImportOrchestratorService = Depends(get_import_orchestrator_service),
) -> ImportHistoryResponse:
    run_page = orchestrator.list_runs(page=page, limit=limit)
    return ImportHistoryResponse(
        data=[_to_run_response(run) for run in run_page.items],
        pagination=PaginationResponse(
            total=run_page.total,
            page=run_page.page,
            limit=run_page.limit,
            pages=run_page.pages,
        ),
    )


@router.delete("/{run_id}", response_model=DeleteRunResponse)
def delete_import_run(
    run_id: UUID,
    orchestrator: ImportOrchestratorService = Depends(get_import_orchestrator_service),
) -> DeleteRunResponse:
    if not orchestrator.delete_run(run_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Import run not found: {run_id}",
        )
    return DeleteRunResponse(deleted=True, run_id=run_id)


@router.delete("", response_model=DeleteAllRunsResponse)
def delete_all_import_runs(
    orchestrator: ImportOrchestratorService = Depends(get_import_orchestrator_service),
) -> DeleteAllRunsResponse:
    return DeleteAllRunsResponse(deleted=orchestrator.delete_all_runs())


def _to_run_response(run: ImportRun) -> ImportRunResponse:
    return ImportRunResponse(
        id=run.id,
        file_name=run.file_name,
        source_url=run.source_url,
        timestamp=as_utc(run.timestamp),
        total=run.total,
        new=run.new,
        updated=run.updated,
        failed=run.failed,
        failed_reasons=list(run.failed_reasons or []),
        status=run.status,
        processing_time_ms=run.processing_time_ms,
        total_batches=run.total_batches,
        completed_batches=run.completed_batches,
        error_message=run.error_message,
    )
