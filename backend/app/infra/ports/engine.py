from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any


class EngineError(RuntimeError):
    """Base error for the external workflow engine."""


class EngineHTTPError(EngineError):
    def __init__(self, status_code: int, detail: str = "", *, code: str | None = None):
        super().__init__(f"Workflow engine returned HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.code = code


class EngineTimeoutError(EngineError):
    """The engine did not answer (or stopped streaming) within the timeout."""


class EngineUnavailableError(EngineError):
    """No response at all: connection refused, DNS failure, bad base URL."""


class StreamTransportError(EngineError):
    def __init__(self, message: str, *, recoverable: bool):
        super().__init__(message)
        self.recoverable = recoverable


class WorkflowEnginePort(ABC):
    @abstractmethod
    def run_blocking(self, *, mode: str, payload: dict[str, Any], user: str) -> dict[str, Any]:
        """Run one request in blocking mode and return the engine's JSON reply."""

    @abstractmethod
    def run_streaming(self, *, payload: dict[str, Any], user: str) -> Iterator[bytes]:
        """Run a workflow in streaming mode, yielding raw response chunks.

        Implementations raise ``StreamTransportError`` when the connection
        breaks after the stream has started.
        """

    @abstractmethod
    def list_conversations(self, *, user: str, limit: int = 20, last_id: str | None = None) -> dict[str, Any]:
        """Return one page of the user's conversations as ``{"data": [...], ...}``."""

    @abstractmethod
    def list_messages(
        self,
        *,
        conversation_id: str,
        user: str,
        limit: int = 20,
        first_id: str | None = None,
    ) -> dict[str, Any]:
        """Return one page of a conversation's messages as ``{"data": [...], ...}``."""
