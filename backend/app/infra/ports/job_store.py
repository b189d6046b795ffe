from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from app.domain.models import JobRecord


class JobStoreError(RuntimeError):
    """Raised when a store operation keeps failing after its internal retries."""


class JobStorePort(ABC):
    @abstractmethod
    def create(self, *, user_id: str, type: str, input: dict[str, Any]) -> JobRecord:
        """Persist a fresh pending job and return the full record."""

    @abstractmethod
    def get(self, job_id: str, *, attempts: int = 2) -> JobRecord | None:
        """Read the current record. May be briefly stale under concurrent writes."""

    @abstractmethod
    def update(self, job_id: str, **changes: Any) -> JobRecord | None:
        """Merge ``changes`` into the stored job; ``None`` when the id is unknown."""

    @abstractmethod
    def list_jobs(self) -> list[JobRecord]:
        """Return every decodable job, newest first."""
