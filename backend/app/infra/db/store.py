from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.models import JobRecord, apply_job_update, utc_now_iso
from app.infra.db.models import JobRow
from app.infra.db.session import get_session_factory
from app.infra.ports.job_store import JobStoreError, JobStorePort
from app.utils.ids import new_public_id
from app.utils.locks import KeyedLocks
from app.utils.retry import call_with_retries

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_datetime(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class DatabaseJobStore(JobStorePort):
    """Job persistence backed by SQLAlchemy."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        max_attempts: int = 3,
        retry_delay_seconds: float = 0.1,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._locks = KeyedLocks()

    @staticmethod
    def _to_job_record(row: JobRow) -> JobRecord:
        return JobRecord.from_dict(
            {
                "job_id": row.public_id,
                "user_id": row.user_id,
                "type": row.type,
                "status": row.status,
                "input": row.input_json,
                "progress": row.progress,
                "result": row.result_json,
                "error_message": row.error_message,
                "streaming_logs": row.streaming_logs,
                "created_at": _to_iso(row.created_at),
                "updated_at": _to_iso(row.updated_at),
                "completed_at": _to_iso(row.completed_at),
            }
        )

    @staticmethod
    def _write_row(row: JobRow, record: JobRecord) -> None:
        row.status = record.status
        row.progress = record.progress
        row.result_json = record.result
        row.error_message = record.error_message
        row.streaming_logs = [entry.to_dict() for entry in record.streaming_logs]
        row.updated_at = _to_datetime(record.updated_at)
        row.completed_at = _to_datetime(record.completed_at)

    def _call(self, description: str, fn: Callable[[], T]) -> T:
        try:
            return call_with_retries(
                fn,
                attempts=self.max_attempts,
                retry_on=(OperationalError,),
                delay_seconds=self.retry_delay_seconds,
                description=f"job store {description}",
            )
        except OperationalError as exc:
            raise JobStoreError(f"Job store {description} failed: {exc}") from exc

    def create(self, *, user_id: str, type: str, input: dict[str, Any]) -> JobRecord:
        def _create() -> JobRecord:
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
            with self._session_factory() as db:
                row = JobRow(
                    public_id=record.job_id,
                    user_id=record.user_id,
                    type=record.type,
                    input_json=record.input,
                    created_at=_to_datetime(record.created_at),
                )
                self._write_row(row, record)
                db.add(row)
                db.commit()
            return record

        record = self._call("create", _create)
        logger.info("Created job %s (type=%s, user=%s)", record.job_id, record.type, record.user_id)
        return record

    def _read_once(self, job_id: str) -> JobRecord | None:
        with self._session_factory() as db:
            row = db.execute(select(JobRow).where(JobRow.public_id == job_id)).scalar_one_or_none()
            if row is None:
                return None
            return self._to_job_record(row)

    def get(self, job_id: str, *, attempts: int = 2) -> JobRecord | None:
        attempts = max(1, attempts)
        for attempt in range(1, attempts + 1):
            record = self._call("get", lambda: self._read_once(job_id))
            if record is not None:
                return record
            if attempt < attempts:
                time.sleep(self.retry_delay_seconds)
        return None

    def _update_once(self, job_id: str, changes: dict[str, Any]) -> JobRecord | None:
        with self._session_factory() as db:
            stmt = select(JobRow).where(JobRow.public_id == job_id).with_for_update()
            row = db.execute(stmt).scalar_one_or_none()
            if row is None:
                return None

            current = self._to_job_record(row)
            updated = apply_job_update(current, changes)
            if updated is current:
                logger.debug("Ignoring update for terminal job %s", job_id)
                return current

            self._write_row(row, updated)
            db.commit()
            return updated

    def update(self, job_id: str, **changes: Any) -> JobRecord | None:
        with self._locks.hold(job_id):
            return self._call("update", lambda: self._update_once(job_id, changes))

    def list_jobs(self) -> list[JobRecord]:
        def _rows() -> list[JobRow]:
            with self._session_factory() as db:
                stmt = select(JobRow).order_by(JobRow.created_at.desc(), JobRow.id.desc())
                return list(db.execute(stmt).scalars().all())

        records: list[JobRecord] = []
        for row in self._call("list", _rows):
            try:
                records.append(self._to_job_record(row))
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed job row %s: %s", row.public_id, exc)
        return records
