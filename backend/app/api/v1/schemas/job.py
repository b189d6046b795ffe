from typing import Any

from pydantic import BaseModel


class JobStartRequest(BaseModel):
    type: str | None = None
    userId: str | None = None
    input: Any = None


class JobStartResponse(BaseModel):
    success: bool = True
    jobId: str
    message: str = "Job started successfully"


class StreamingLogItem(BaseModel):
    timestamp: str
    event: str
    data: dict[str, Any] = {}


class JobDetailResponse(BaseModel):
    id: str
    userId: str
    type: str
    status: str
    progress: int = 0
    input: dict[str, Any] = {}
    result: dict[str, Any] | None = None
    errorMessage: str | None = None
    streamingLogs: list[StreamingLogItem] = []
    createdAt: str
    updatedAt: str
    completedAt: str | None = None


class JobCancelResponse(BaseModel):
    success: bool = True
    message: str = "Job cancelled"


class JobListResponse(BaseModel):
    success: bool = True
    jobs: list[JobDetailResponse]
    total: int
