"""Job orchestration: lifecycle, background processing and failure reporting.

One background unit of work runs per job. It moves the job from ``pending``
to ``processing`` before calling the workflow engine, drives the engine in
blocking or streaming mode, and writes the terminal state. Callers poll the
job store for progress instead of holding a request open for the whole run.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from app.application.progress import (
    ACCEPTED,
    COMPLETE,
    STREAM_CEILING,
    ProgressTracker,
    estimate_progress,
    should_persist,
)
from app.application.stream import WorkflowStreamAdapter
from app.domain.models import JOB_TYPES, JobRecord, StreamingLogEntry
from app.infra.ports.engine import (
    EngineHTTPError,
    EngineTimeoutError,
    EngineUnavailableError,
    WorkflowEnginePort,
)
from app.infra.ports.job_store import JobStoreError, JobStorePort

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"

INTERRUPTED_WARNING = (
    "The streaming connection was interrupted before the final result arrived. "
    "The workflow likely completed on the engine, but the result here may be partial."
)
INTERRUPTED_SUGGESTION = "Check the workflow engine dashboard to confirm the run status."

_UPSTREAM_TIMEOUT_STATUSES = frozenset({408, 429, 504})


class JobValidationError(ValueError):
    """Raised when a start request is missing required fields."""


class ActiveJobRegistry:
    """Job ids that currently have a running unit of work in this process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def claim(self, job_id: str) -> bool:
        with self._lock:
            if job_id in self._active:
                return False
            self._active.add(job_id)
            return True

    def release(self, job_id: str) -> None:
        with self._lock:
            self._active.discard(job_id)

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    def snapshot(self) -> set[str]:
        with self._lock:
            return set(self._active)

    @contextmanager
    def hold(self, job_id: str) -> Iterator[bool]:
        """Yield whether the claim succeeded; release on exit only if it did."""
        claimed = self.claim(job_id)
        try:
            yield claimed
        finally:
            if claimed:
                self.release(job_id)


def describe_failure(exc: BaseException) -> tuple[str, dict[str, Any]]:
    """Build an operator-facing message and structured details for a failed job."""
    details: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if isinstance(exc, EngineHTTPError):
        details["httpStatus"] = exc.status_code
        details["responseData"] = exc.detail
        if exc.status_code in _UPSTREAM_TIMEOUT_STATUSES:
            message = (
                f"Workflow engine timeout ({exc.status_code}): the workflow is likely still running "
                "upstream. Check the engine dashboard for its status before retrying."
            )
        else:
            message = f"Workflow engine error ({exc.status_code}): {exc.detail or exc}"
    elif isinstance(exc, EngineTimeoutError):
        details["timeout"] = True
        message = (
            "Request timeout: the workflow is taking too long and is likely still running upstream. "
            "Check the engine dashboard for its status."
        )
    elif isinstance(exc, EngineUnavailableError):
        details["noResponse"] = True
        message = "No response from the workflow engine. Check network connectivity and the API URL/key configuration."
    else:
        message = f"Unexpected error: {exc}"

    return message, details


class JobOrchestrator:
    def __init__(
        self,
        *,
        store: JobStorePort,
        engine: WorkflowEnginePort,
        persist_every: int = 100,
        terminal_write_attempts: int = 5,
        retry_delay_seconds: float = 0.1,
        sync_processing: bool = False,
    ):
        self.store = store
        self.engine = engine
        self.persist_every = persist_every
        self.terminal_write_attempts = max(1, terminal_write_attempts)
        self.retry_delay_seconds = max(0.0, retry_delay_seconds)
        self.sync_processing = sync_processing
        self.active_jobs = ActiveJobRegistry()
        self.progress = ProgressTracker()

    # -- caller-facing operations -------------------------------------------------

    def start(self, *, type: str | None, user_id: str | None, input: Any) -> JobRecord:
        if not type or not user_id or input is None:
            raise JobValidationError("Missing required fields: type, userId and input are required")
        if type not in JOB_TYPES:
            raise JobValidationError(f"Unsupported job type: {type}")
        if not isinstance(input, dict):
            raise JobValidationError("input must be an object")

        job = self.store.create(user_id=user_id, type=type, input=input)

        kwargs = {"type": job.type, "user_id": job.user_id, "input": job.input}
        if self.sync_processing:
            self.process_job(job.job_id, **kwargs)
        else:
            threading.Thread(
                target=self.process_job,
                args=(job.job_id,),
                kwargs=kwargs,
                name=f"job-{job.job_id}",
                daemon=True,
            ).start()
        logger.info("Scheduled job %s (type=%s)", job.job_id, job.type)
        return job

    def get_status(self, job_id: str) -> JobRecord | None:
        return self.store.get(job_id)

    def list_jobs(self) -> list[JobRecord]:
        return self.store.list_jobs()

    def cancel(self, job_id: str) -> JobRecord | None:
        """Force a running job to ``failed``; ``None`` if unknown or already terminal.

        The background unit of work is not interrupted; its later writes land
        on a terminal record and are ignored by the store.
        """
        job = self.store.get(job_id)
        if job is None or job.is_terminal:
            return None
        updated = self.store.update(job_id, status="failed", error_message=CANCELLED_MESSAGE)
        if updated is None or updated.error_message != CANCELLED_MESSAGE:
            # Finished on its own between the read and the write.
            return None
        logger.info("Cancelled job %s (was %s)", job_id, job.status)
        return updated

    # -- background unit of work --------------------------------------------------

    def process_job(self, job_id: str, *, type: str, user_id: str, input: dict[str, Any]) -> None:
        with self.active_jobs.hold(job_id) as claimed:
            if not claimed:
                logger.warning("Job %s is already processing, skipping duplicate start", job_id)
                return
            try:
                self._run(job_id, type=type, user_id=user_id, input=input)
            finally:
                self.progress.forget(job_id)

    def _run(self, job_id: str, *, type: str, user_id: str, input: dict[str, Any]) -> None:
        started = time.monotonic()
        logger.info("Job %s starting (type=%s, user=%s)", job_id, type, user_id)
        try:
            self._safe_update(job_id, status="processing", progress=0)

            if type == "workflow":
                result, logs = self._run_workflow(job_id, user_id=user_id, input=input)
                # Carry the full log list on the terminal write; earlier saves may have failed.
                self._write_terminal(
                    job_id, status="completed", progress=COMPLETE, result=result, streaming_logs=logs
                )
            else:
                result = self._run_blocking(job_id, mode=type, user_id=user_id, input=input)
                self._write_terminal(job_id, status="completed", progress=COMPLETE, result=result)
            logger.info("Job %s completed in %.1fs", job_id, time.monotonic() - started)
        except Exception as exc:
            message, details = describe_failure(exc)
            logger.exception("Job %s failed after %.1fs: %s", job_id, time.monotonic() - started, message)
            self._write_terminal(
                job_id,
                status="failed",
                error_message=message,
                result={"error": True, "errorDetails": details},
            )

    def _run_blocking(self, job_id: str, *, mode: str, user_id: str, input: dict[str, Any]) -> dict[str, Any]:
        self._safe_update(job_id, progress=self._advance(job_id, estimate_progress("accepted")))
        result = self.engine.run_blocking(mode=mode, payload=input, user=user_id)
        self._safe_update(job_id, progress=self._advance(job_id, estimate_progress("blocking_returned")))
        return result

    def _run_workflow(
        self, job_id: str, *, user_id: str, input: dict[str, Any]
    ) -> tuple[dict[str, Any], list[StreamingLogEntry]]:
        self._safe_update(job_id, progress=self._advance(job_id, ACCEPTED))

        adapter = WorkflowStreamAdapter(job_id=job_id)
        logs: list[StreamingLogEntry] = []
        for event in adapter.iterate(self.engine.run_streaming(payload=input, user=user_id)):
            logs.append(event.to_log_entry())
            progress = self._advance(job_id, estimate_progress("streaming", len(logs)))

            if event.event == "workflow_started":
                logger.info("Job %s: workflow started on engine", job_id)
            elif event.event == "workflow_finished":
                logger.info("Job %s: workflow finished on engine", job_id)
            elif "error" in event.event:
                logger.error("Job %s: error event from engine: %s", job_id, event.payload)

            if should_persist(event.event, len(logs), every=self.persist_every):
                logger.debug("Job %s: saving %d streamed events", job_id, len(logs))
                self._safe_update(job_id, progress=progress, streaming_logs=list(logs))

        summary = adapter.summary
        if summary is None:
            raise RuntimeError("Stream ended without a summary")

        result = summary.to_result()
        if summary.interrupted:
            logger.warning(
                "Job %s: stream interrupted after %d events, marking as partial success",
                job_id,
                summary.total_events,
            )
            result["warning"] = INTERRUPTED_WARNING
            result["suggestion"] = INTERRUPTED_SUGGESTION

        self._safe_update(job_id, progress=self._advance(job_id, STREAM_CEILING), streaming_logs=list(logs))
        return result, logs

    # -- store helpers ------------------------------------------------------------

    def _advance(self, job_id: str, value: int) -> int:
        return self.progress.advance(job_id, value)

    def _safe_update(self, job_id: str, **changes: Any) -> JobRecord | None:
        try:
            return self.store.update(job_id, **changes)
        except JobStoreError as exc:
            logger.warning("Job %s: store update failed, continuing (%s)", job_id, exc)
            return None

    def _write_terminal(self, job_id: str, **changes: Any) -> JobRecord | None:
        for attempt in range(1, self.terminal_write_attempts + 1):
            try:
                return self.store.update(job_id, **changes)
            except JobStoreError as exc:
                logger.warning(
                    "Job %s: terminal write failed (attempt %d/%d): %s",
                    job_id,
                    attempt,
                    self.terminal_write_attempts,
                    exc,
                )
                if attempt < self.terminal_write_attempts and self.retry_delay_seconds > 0:
                    time.sleep(self.retry_delay_seconds * attempt)
            except Exception:
                # Only JobStoreError is retried.
                logger.exception("Job %s: terminal write rejected, record stays as stored", job_id)
                return None
        logger.error("Job %s: giving up on terminal write, record stays %s", job_id, changes.get("status"))
        return None
