from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

from app.domain.models import EngineLog, LogPage, paginate_logs
from app.infra.ports.job_store import JobStoreError
from app.infra.ports.log_store import LogStorePort
from app.utils.ids import new_public_id
from app.utils.retry import call_with_retries

logger = logging.getLogger(__name__)


class CorruptLogFileError(ValueError):
    pass


class FileLogStore(LogStorePort):
    """All engine logs in one ``<base_dir>/logs.json`` document, newest first."""

    def __init__(self, base_dir: Path, *, max_attempts: int = 3, retry_delay_seconds: float = 0.1):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.base_dir / "logs.json"
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._lock = threading.Lock()

    def _io(self, description: str, fn):
        try:
            return call_with_retries(
                fn,
                attempts=self.max_attempts,
                retry_on=(OSError,),
                delay_seconds=self.retry_delay_seconds,
                description=f"log file {description}",
            )
        except OSError as exc:
            raise JobStoreError(f"Log file {description} failed: {exc}") from exc

    def _load(self) -> list[EngineLog]:
        if not self.path.exists():
            return []
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise CorruptLogFileError(f"{self.path.name} is not valid JSON: {exc}") from exc
        items = document.get("logs") if isinstance(document, dict) else None
        if not isinstance(items, list):
            raise CorruptLogFileError(f"{self.path.name} has no logs list")

        logs: list[EngineLog] = []
        for item in items:
            try:
                logs.append(EngineLog.from_dict(item))
            except ValueError as exc:
                logger.warning("Skipping malformed log entry in %s: %s", self.path.name, exc)
        return logs

    def _save(self, logs: list[EngineLog]) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            payload = {"logs": [log.to_dict() for log in logs]}
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

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
        fields = {
            "engine_log_id": engine_log_id,
            "log_type": log_type,
            "content": dict(content),
            "user_id": user_id,
            "status": status,
            "created_at": created_at,
            "fetched_at": fetched_at,
        }

        def _upsert() -> EngineLog:
            logs = self._load()
            for index, existing in enumerate(logs):
                if existing.engine_log_id == engine_log_id:
                    logs[index] = replace(existing, **fields)
                    self._save(logs)
                    return logs[index]
            log = EngineLog(log_id=new_public_id("log_"), **fields)
            logs.insert(0, log)
            self._save(logs)
            return log

        with self._lock:
            try:
                return self._io("upsert", _upsert)
            except CorruptLogFileError as exc:
                # Refuse to overwrite a document we could not read.
                raise JobStoreError(str(exc)) from exc

    def page(self, *, page: int = 1, limit: int = 20) -> LogPage:
        try:
            logs = self._io("read", self._load)
        except CorruptLogFileError as exc:
            logger.error("Log file unreadable, serving no logs: %s", exc)
            logs = []
        return paginate_logs(logs, page=page, limit=limit)
