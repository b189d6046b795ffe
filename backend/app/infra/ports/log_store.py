from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from app.domain.models import EngineLog, LogPage


class LogStorePort(ABC):
    @abstractmethod
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
        """Insert a log, or refresh the one with the same ``engine_log_id`` in place.

        A refreshed log keeps its ``log_id`` and its position; new logs go first.
        """

    @abstractmethod
    def page(self, *, page: int = 1, limit: int = 20) -> LogPage:
        """Return one page of stored logs, most recently inserted first."""
