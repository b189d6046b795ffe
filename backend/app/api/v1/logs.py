from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.v1.dependencies import provide_log_store, provide_log_sync
from app.api.v1.schemas.log import EngineLogItem, LogFetchResponse, LogListResponse, LogPagination
from app.application.log_sync import LogSyncService
from app.domain.models import EngineLog
from app.infra.ports.engine import EngineError
from app.infra.ports.job_store import JobStoreError
from app.infra.ports.log_store import LogStorePort

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["logs"])


def _to_item(log: EngineLog) -> EngineLogItem:
    return EngineLogItem(
        id=log.log_id,
        engineLogId=log.engine_log_id,
        logType=log.log_type,
        content=log.content,
        userId=log.user_id,
        status=log.status,
        createdAt=log.created_at,
        fetchedAt=log.fetched_at,
    )


@router.get("/logs", response_model=LogListResponse)
def list_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    store: LogStorePort = Depends(provide_log_store),
):
    try:
        result = store.page(page=page, limit=limit)
    except JobStoreError as exc:
        logger.error("Log store unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Log store unavailable") from exc

    return LogListResponse(
        logs=[_to_item(log) for log in result.logs],
        pagination=LogPagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            totalPages=result.total_pages,
        ),
    )


@router.get("/logs/fetch", response_model=LogFetchResponse)
def fetch_logs(sync: LogSyncService = Depends(provide_log_sync)):
    try:
        report = sync.fetch_and_store()
    except EngineError as exc:
        logger.error("Log sync failed: %s", exc)
        raise HTTPException(status_code=502, detail=f"Log sync failed: {exc}") from exc

    message = "Skipped: the engine app has no conversations to sync" if report.skipped else "Logs fetched successfully"
    return LogFetchResponse(
        message=message,
        timestamp=report.fetched_at,
        conversations=report.conversations,
        messages=report.messages,
        failed=report.failed,
        skipped=report.skipped,
    )
