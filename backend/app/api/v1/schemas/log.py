from typing import Any

from pydantic import BaseModel


class EngineLogItem(BaseModel):
    id: str
    engineLogId: str
    logType: str
    content: dict[str, Any] = {}
    userId: str
    status: str
    createdAt: str
    fetchedAt: str


class LogPagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class LogListResponse(BaseModel):
    logs: list[EngineLogItem]
    pagination: LogPagination


class LogFetchResponse(BaseModel):
    success: bool = True
    message: str
    timestamp: str
    conversations: int = 0
    messages: int = 0
    failed: int = 0
    skipped: bool = False
