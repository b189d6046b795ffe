from __future__ import annotations

import copy
import threading
from dataclasses import replace
from typing import Any

from app.domain.models import EngineLog, LogPage, paginate_logs
from app.infra.ports.log_store import LogStorePort
from app.utils.ids import new_public_id


class InMemoryLogStore(LogStorePort):
    def __init__(self):
        self._lock = threading.Lock()
        self._logs: list[EngineLog] = []

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
            "content": copy.deepcopy(content),
            "user_id": user_id,
            "status": status,
            "created_at": created_at,
            "fetched_at": fetched_at,
        }
        with self._lock:
            for index, existing in enumerate(self._logs):
                if existing.engine_log_id == engine_log_id:
                    self._logs[index] = replace(existing, **fields)
                    return copy.deepcopy(self._logs[index])
            log = EngineLog(log_id=new_public_id("log_"), **fields)
            self._logs.insert(0, log)
            return copy.deepcopy(log)

    def page(self, *, page: int = 1, limit: int = 20) -> LogPage:
        with self._lock:
            logs = copy.deepcopy(self._logs)
        return paginate_logs(logs, page=page, limit=limit)
