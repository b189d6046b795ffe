from __future__ import annotations

import copy
import threading
from typing import Any

from app.domain.models import JobRecord, apply_job_update, utc_now_iso
from app.infra.ports.job_store import JobStorePort
from app.utils.ids import new_public_id


class InMemoryJobStore(JobStorePort):
    """Process-local store for tests and zero-config development."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: dict[str, JobRecord] = {}

    def create(self, *, user_id: str, type: str, input: dict[str, Any]) -> JobRecord:
        now = utc_now_iso()
        record = JobRecord(
            job_id=new_public_id("job_"),
            user_id=user_id,
            type=type,  # type: ignore[arg-type]
            status="pending",
            input=copy.deepcopy(input),
            progress=0,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._jobs[record.job_id] = record
        return copy.deepcopy(record)

    def get(self, job_id: str, *, attempts: int = 2) -> JobRecord | None:
        with self._lock:
            record = self._jobs.get(job_id)
            return copy.deepcopy(record) if record is not None else None

    def update(self, job_id: str, **changes: Any) -> JobRecord | None:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            updated = apply_job_update(current, copy.deepcopy(changes))
            self._jobs[job_id] = updated
            return copy.deepcopy(updated)

    def list_jobs(self) -> list[JobRecord]:
        with self._lock:
            records = [copy.deepcopy(record) for record in self._jobs.values()]
        records.sort(key=lambda record: (record.created_at, record.job_id), reverse=True)
        return records
