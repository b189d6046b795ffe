from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.models import EngineLog, LogPage
from app.infra.db.models import EngineLogRow
from app.infra.db.session import get_session_factory
from app.infra.db.store import _to_datetime, _to_iso
from app.infra.ports.job_store import JobStoreError
from app.infra.ports.log_store import LogStorePort
from app.utils.ids import new_public_id
from app.utils.retry import call_with_retries

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseLogStore(LogStorePort):
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
        self._lock = threading.Lock()

    @staticmethod
    def _to_engine_log(row: EngineLogRow) -> EngineLog:
        return EngineLog.from_dict(
            {
                "log_id": row.public_id,
                "engine_log_id": row.engine_log_id,
                "log_type": row.log_type,
                "content": row.content,
                "user_id": row.user_id,
                "status": row.status,
                "created_at": _to_iso(row.created_at),
                "fetched_at": _to_iso(row.fetched_at),
            }
        )

    def _call(self, description: str, fn: Callable[[], T]) -> T:
        try:
            return call_with_retries(
                fn,
                attempts=self.max_attempts,
                retry_on=(OperationalError,),
                delay_seconds=self.retry_delay_seconds,
                description=f"log store {description}",
            )
        except OperationalError as exc:
            raise JobStoreError(f"Log store {description} failed: {exc}") from exc

    def upsert(
        self,
        *,
        engine_log_id: str,
        log_type: str,
        content: dict[str, Any],
        user_id: str,
        status: str,
        created_at: str,
        fetched_at: str,
    ) -> EngineLog:
        def _upsert() -> EngineLog:
            with self._session_factory() as db:
                stmt = select(EngineLogRow).where(EngineLogRow.engine_log_id == engine_log_id).with_for_update()
                row = db.execute(stmt).scalar_one_or_none()
                if row is None:
                    row = EngineLogRow(public_id=new_public_id("log_"), engine_log_id=engine_log_id)
                    db.add(row)
                row.log_type = log_type
                row.content = dict(content)
                row.user_id = user_id
                row.status = status
                row.created_at = _to_datetime(created_at)
                row.fetched_at = _to_datetime(fetched_at)
                db.commit()
                return self._to_engine_log(row)

        with self._lock:
            return self._call("upsert", _upsert)

    def page(self, *, page: int = 1, limit: int = 20) -> LogPage:
        page = max(1, page)
        limit = max(1, limit)

        def _page() -> tuple[int, list[EngineLogRow]]:
            with self._session_factory() as db:
                total = db.execute(select(func.count()).select_from(EngineLogRow)).scalar_one()
                stmt = select(EngineLogRow).order_by(EngineLogRow.id.desc()).offset((page - 1) * limit).limit(limit)
                return total, list(db.execute(stmt).scalars().all())

        total, rows = self._call("page", _page)
        logs: list[EngineLog] = []
        for row in rows:
            try:
                logs.append(self._to_engine_log(row))
            except ValueError as exc:
                logger.warning("Skipping malformed log row %s: %s", row.public_id, exc)
        return LogPage(logs=logs, total=total, page=page, limit=limit)
