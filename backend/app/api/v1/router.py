from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.api.v1.dependencies import provide_orchestrator
from app.api.v1.schemas.job import (
    JobCancelResponse,
    JobDetailResponse,
    JobListResponse,
    JobStartRequest,
    JobStartResponse,
    StreamingLogItem,
)
from app.application.jobs import JobOrchestrator, JobValidationError
from app.domain.models import JobRecord
from app.infra.ports.job_store import JobStoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["v1"])


def _to_detail(row: JobRecord) -> JobDetailResponse:
    return JobDetailResponse(
        id=row.job_id,
        userId=row.user_id,
        type=row.type,
        status=row.status,
        progress=row.progress,
        input=row.input,
        result=row.result,
        errorMessage=row.error_message,
        streamingLogs=[
            StreamingLogItem(timestamp=entry.timestamp, event=entry.event, data=entry.data)
            for entry in row.streaming_logs
        ],
        createdAt=row.created_at,
        updatedAt=row.updated_at,
        completedAt=row.completed_at,
    )


def _store_unavailable(exc: JobStoreError) -> HTTPException:
    logger.error("Job store unavailable: %s", exc)
    return HTTPException(status_code=503, detail="Job store unavailable")


@router.post("/jobs/start", response_model=JobStartResponse)
def start_job(body: JobStartRequest, orchestrator: JobOrchestrator = Depends(provide_orchestrator)):
    try:
        job = orchestrator.start(type=body.type, user_id=body.userId, input=body.input)
    except JobValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except JobStoreError as exc:
        raise _store_unavailable(exc) from exc

    return JobStartResponse(jobId=job.job_id)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(orchestrator: JobOrchestrator = Depends(provide_orchestrator)):
    try:
        rows = orchestrator.list_jobs()
    except JobStoreError as exc:
        raise _store_unavailable(exc) from exc

    return JobListResponse(jobs=[_to_detail(row) for row in rows], total=len(rows))


@router.get("/jobs/{jobId}", response_model=JobDetailResponse)
def get_job(jobId: str, orchestrator: JobOrchestrator = Depends(provide_orchestrator)):
    try:
        row = orchestrator.get_status(jobId)
    except JobStoreError as exc:
        raise _store_unavailable(exc) from exc
    if row is None:
        raise HTTPException(status_code=404, detail="Job not found")

    return _to_detail(row)


@router.delete("/jobs/{jobId}", response_model=JobCancelResponse)
def cancel_job(jobId: str, orchestrator: JobOrchestrator = Depends(provide_orchestrator)):
    try:
        row = orchestrator.cancel(jobId)
    except JobStoreError as exc:
        raise _store_unavailable(exc) from exc
    if row is None:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobCancelResponse()
