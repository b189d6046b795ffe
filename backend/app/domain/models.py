from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

JobType = Literal["chat", "workflow", "completion"]
JobStatus = Literal["pending", "processing", "completed", "failed"]

JOB_TYPES: frozenset[str] = frozenset({"chat", "workflow", "completion"})
JOB_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

MUTABLE_JOB_FIELDS: frozenset[str] = frozenset(
    {"status", "progress", "result", "error_message", "streaming_logs"}
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StreamingLogEntry:
    timestamp: str
    event: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "event": self.event, "data": self.data}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StreamingLogEntry:
        if not isinstance(raw, dict) or not isinstance(raw.get("event"), str):
            raise ValueError(f"Malformed streaming log entry: {raw!r}")
        data = raw.get("data")
        return cls(
            timestamp=str(raw.get("timestamp") or ""),
            event=raw["event"],
            data=dict(data) if isinstance(data, dict) else {},
        )


@dataclass
class JobRecord:
    job_id: str
    user_id: str
    type: JobType
    status: JobStatus
    input: dict[str, Any]
    progress: int = 0
    result: dict[str, Any] | None = None
    error_message: str | None = None
    streaming_logs: list[StreamingLogEntry] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "type": self.type,
            "status": self.status,
            "input": self.input,
            "progress": self.progress,
            "result": self.result,
            "error_message": self.error_message,
            "streaming_logs": [entry.to_dict() for entry in self.streaming_logs],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> JobRecord:
        """Rebuild a record from its persisted form, raising ``ValueError`` on garbage."""
        if not isinstance(raw, dict):
            raise ValueError("Job document is not an object")
        status = raw.get("status")
        if status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {status!r}")
        job_type = raw.get("type")
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job_type!r}")
        for key in ("job_id", "user_id", "created_at"):
            if not isinstance(raw.get(key), str) or not raw[key]:
                raise ValueError(f"Job document is missing {key}")

        return cls(
            job_id=raw["job_id"],
            user_id=raw["user_id"],
            type=job_type,
            status=status,
            input=dict(raw.get("input") or {}),
            progress=int(raw.get("progress") or 0),
            result=raw.get("result"),
            error_message=raw.get("error_message"),
            streaming_logs=[StreamingLogEntry.from_dict(item) for item in raw.get("streaming_logs") or []],
            created_at=raw["created_at"],
            updated_at=str(raw.get("updated_at") or raw["created_at"]),
            completed_at=raw.get("completed_at"),
        )


@dataclass
class StreamEvent:
    sequence: int
    timestamp: str
    event: str
    payload: dict[str, Any]

    def to_log_entry(self) -> StreamingLogEntry:
        return StreamingLogEntry(timestamp=self.timestamp, event=self.event, data=self.payload)


@dataclass
class StreamSummary:
    total_events: int
    text_output: str
    workflow_data: dict[str, Any]
    completed_at: str
    success: bool = True
    workflow_run_id: str | None = None
    interrupted: bool = False
    note: str | None = None

    def to_result(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "workflow_run_id": self.workflow_run_id,
            "total_events": self.total_events,
            "text_output": self.text_output,
            "workflow_data": self.workflow_data,
            "completed_at": self.completed_at,
        }
        if self.interrupted:
            result["interrupted"] = True
            result["note"] = self.note
        return result


def _status_rank(status: str) -> int:
    return JOB_STATUSES.index(status)


def apply_job_update(record: JobRecord, changes: dict[str, Any], *, now: str | None = None) -> JobRecord:
    """Merge ``changes`` into ``record`` and return the new record.

    Terminal records are frozen and come back unchanged. Progress never
    regresses and status never moves backwards.
    """
    unknown = set(changes) - MUTABLE_JOB_FIELDS
    if unknown:
        raise ValueError(f"Unsupported job fields: {', '.join(sorted(unknown))}")

    if record.is_terminal:
        return record

    merged: dict[str, Any] = {}

    status = changes.get("status")
    if status is not None:
        if status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {status!r}")
        if _status_rank(status) >= _status_rank(record.status):
            merged["status"] = status

    if "progress" in changes and changes["progress"] is not None:
        progress = max(0, min(100, int(changes["progress"])))
        merged["progress"] = max(record.progress, progress)

    if "result" in changes:
        merged["result"] = changes["result"]
    if "error_message" in changes:
        merged["error_message"] = changes["error_message"]
    if "streaming_logs" in changes and changes["streaming_logs"] is not None:
        merged["streaming_logs"] = list(changes["streaming_logs"])

    if merged.get("status") == "completed":
        merged["progress"] = 100

    timestamp = now or utc_now_iso()
    merged["updated_at"] = timestamp
    if merged.get("status") in TERMINAL_STATUSES and record.completed_at is None:
        merged["completed_at"] = timestamp

    return replace(record, **merged)


@dataclass
class EngineLog:
    """One message pulled from the engine's conversation history."""

    log_id: str
    engine_log_id: str
    log_type: str
    content: dict[str, Any]
    user_id: str
    status: str
    created_at: str
    fetched_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_id": self.log_id,
            "engine_log_id": self.engine_log_id,
            "log_type": self.log_type,
            "content": self.content,
            "user_id": self.user_id,
            "status": self.status,
            "created_at": self.created_at,
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EngineLog:
        if not isinstance(raw, dict):
            raise ValueError("Log document is not an object")
        for key in ("log_id", "engine_log_id"):
            if not isinstance(raw.get(key), str) or not raw[key]:
                raise ValueError(f"Log document is missing {key}")
        content = raw.get("content")
        return cls(
            log_id=raw["log_id"],
            engine_log_id=raw["engine_log_id"],
            log_type=str(raw.get("log_type") or "message"),
            content=dict(content) if isinstance(content, dict) else {},
            user_id=str(raw.get("user_id") or ""),
            status=str(raw.get("status") or "unknown"),
            created_at=str(raw.get("created_at") or ""),
            fetched_at=str(raw.get("fetched_at") or ""),
        )


@dataclass
class LogPage:
    logs: list[EngineLog]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit > 0 else 0


def paginate_logs(logs: list[EngineLog], *, page: int, limit: int) -> LogPage:
    page = max(1, page)
    limit = max(1, limit)
    start = (page - 1) * limit
    return LogPage(logs=logs[start : start + limit], total=len(logs), page=page, limit=limit)
