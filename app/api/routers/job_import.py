"""
Job import trigger and queue endpoints.
"""

from __future__ import annotations

from urllib.parse import unquote, urlparse

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from app.domain.job_import import TriggerResult
from app.schemas.job_import import QueueStatsResponse, TriggerAllResponse, TriggerResultResponse
from app.services.import_orchestrator_service import (
    FastAPIBackgroundTaskExecutor,
    ImportOrchestratorService,
    get_import_orchestrator_service,
)

router = APIRouter(prefix="/api/import", tags=["job-import"])


@router.post(
    "/trigger",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=TriggerAllResponse,
)
def trigger_all_imports(
    background_tasks: BackgroundTasks,
    orchestrator: ImportOrchestratorService = Depends(get_import_orchestrator_service),
) -> TriggerAllResponse:
    summary = orchestrator.trigger_all(executor=FastAPIBackgroundTaskExecutor(background_tasks))
    return TriggerAllResponse(
        started=summary.started,
        message=summary.message,
        scheduled=summary.scheduled,
        already_running=summary.already_running,
        results=[_to_result_response(result) for result in summary.results],
    )


@router.post(
    "/trigger/{source_url:path}",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=TriggerResultResponse,
)
def trigger_source_import(
    source_url: str,
    background_tasks: BackgroundTasks,
    orchestrator: ImportOrchestratorService = Depends(get_import_orchestrator_service),
) -> TriggerResultResponse:
    decoded = unquote(source_url).strip()
    parsed = urlparse(decoded)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Not an http(s) feed URL: {decoded}",
        )
    result = orchestrator.trigger_for_source(
        decoded,
        executor=FastAPIBackgroundTaskExecutor(background_tasks),
    )
    return _to_result_response(result)


@router.get("/queue-stats", response_model=QueueStatsResponse)
def get_queue_stats(
    orchestrator: ImportOrchestratorService = Depends(get_import_orchestrator_service),
) -> QueueStatsResponse:
    stats = orchestrator.queue_stats()
    return QueueStatsResponse(
        waiting=stats.waiting,
        active=stats.active,
        completed=stats.completed,
        failed=stats.failed,
    )


def _to_result_response(result: TriggerResult) -> TriggerResultResponse:
    return TriggerResultResponse(
        source_url=result.source_url,
        started=result.started,
        message=result.message,
        run_id=result.run_id,
    )
