from __future__ import annotations

import json
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import Any

from app.domain.models import JobRecord, apply_job_update, utc_now_iso
from app.infra.ports.job_store import JobStoreError, JobStorePort
from app.utils.ids import new_public_id
from app.utils.locks import KeyedLocks
from app.utils.retry import call_with_retries

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class FileJobStore(JobStorePort):
    """One JSON document per job under ``<base_dir>/jobs``.

    Documents are replaced atomically, so a reader sees either the previous
    or the next version of a job, never a half-written file.
    """

    def __init__(self, base_dir: Path, *, max_attempts: int = 3, retry_delay_seconds: float = 0.1):
        self.jobs_dir = Path(base_dir) / "jobs"
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._locks = KeyedLocks()

    def _path(self, job_id: str) -> Path | None:
        if not _SAFE_ID.match(job_id):
            return None
        return self.jobs_dir / f"{job_id}.json"

    def _io(self, description: str, fn):
        try:
            return call_with_retries(
                fn,
                attempts=self.max_attempts,
                retry_on=(OSError,),
                delay_seconds=self.retry_delay_seconds,
                description=f"file store {description}",
            )
        except OSError as exc:
            raise JobStoreError(f"File store {description} failed: {exc}") from exc

    def _write(self, record: JobRecord) -> None:
        path = self.jobs_dir / f"{record.job_id}.json"
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_text(json.dumps(record.to_dict(), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    @staticmethod
    def _decode(path: Path) -> JobRecord:
        return JobRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def _read(self, job_id: str) -> JobRecord | None:
        path = self._path(job_id)
        if path is None or not path.exists():
            return None
        try:
            return self._decode(path)
        except FileNotFoundError:
            return None
        except ValueError as exc:
            logger.error("Job file %s is unreadable: %s", path.name, exc)
            return None

    def create(self, *, user_id: str, type: str, input: dict[str, Any]) -> JobRecord:
        now = utc_now_iso()
        record = JobRecord(
            job_id=new_public_id("job_"),
            user_id=user_id,
            type=type,  # type: ignore[arg-type]
            status="pending",
            input=dict(input),
            progress=0,
            created_at=now,
            updated_at=now,
        )
        self._io("create", lambda: self._write(record))
        logger.info("Created job %s (type=%s, user=%s)", record.job_id, record.type, record.user_id)
        return record

    def get(self, job_id: str, *, attempts: int = 2) -> JobRecord | None:
        attempts = max(1, attempts)
        for attempt in range(1, attempts + 1):
            record = self._io("get", lambda: self._read(job_id))
            if record is not None:
                return record
            if attempt < attempts:
                time.sleep(self.retry_delay_seconds)
        return None

    def update(self, job_id: str, **changes: Any) -> JobRecord | None:
        def _update() -> JobRecord | None:
            current = self._read(job_id)
            if current is None:
                return None
            updated = apply_job_update(current, changes)
            if updated is current:
                logger.debug("Ignoring update for terminal job %s", job_id)
                return current
            self._write(updated)
            return updated

        with self._locks.hold(job_id):
            return self._io("update", _update)

    def list_jobs(self) -> list[JobRecord]:
        records: list[JobRecord] = []
        for path in self._io("list", lambda: sorted(self.jobs_dir.glob("*.json"))):
            try:
                records.append(self._decode(path))
            except FileNotFoundError:
                continue
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed job file %s: %s", path.name, exc)
        records.sort(key=lambda record: (record.created_at, record.job_id), reverse=True)
        return records
