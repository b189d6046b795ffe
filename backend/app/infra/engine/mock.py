from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

from app.infra.ports.engine import EngineHTTPError, WorkflowEnginePort


def encode_event(record: dict[str, Any]) -> bytes:
    """Render one record the way the engine streams it: ``data: {...}\\n\\n``."""
    return f"data: {json.dumps(record, ensure_ascii=False)}\n\n".encode("utf-8")


class MockEngine(WorkflowEnginePort):
    provider_name = "mock"
    run_id = "mock-run"

    def __init__(self, *, chunk_count: int = 3, chat_app: bool = True):
        self.chunk_count = chunk_count
        self.chat_app = chat_app

    def run_blocking(self, *, mode: str, payload: dict[str, Any], user: str) -> dict[str, Any]:
        query = payload.get("query") or ""
        return {
            "provider": self.provider_name,
            "mode": mode,
            "user": user,
            "answer": f"[mock] {query}".strip(),
            "inputs": payload.get("inputs") or {},
        }

    def run_streaming(self, *, payload: dict[str, Any], user: str) -> Iterator[bytes]:
        inputs = payload.get("inputs") or {}
        yield encode_event({"event": "workflow_started", "workflow_run_id": self.run_id, "data": {"inputs": inputs}})
        for index in range(self.chunk_count):
            yield encode_event(
                {"event": "text_chunk", "workflow_run_id": self.run_id, "data": {"text": f"chunk-{index} "}}
            )
        yield encode_event(
            {
                "event": "workflow_finished",
                "workflow_run_id": self.run_id,
                "data": {"status": "succeeded", "outputs": {"user": user}},
            }
        )

    def _require_chat_app(self) -> None:
        if not self.chat_app:
            raise EngineHTTPError(400, "App mode is not chat", code="not_chat_app")

    def list_conversations(self, *, user: str, limit: int = 20, last_id: str | None = None) -> dict[str, Any]:
        self._require_chat_app()
        return {
            "data": [{"id": "mock-conversation", "user_id": user, "name": "mock"}],
            "has_more": False,
            "limit": limit,
        }

    def list_messages(
        self,
        *,
        conversation_id: str,
        user: str,
        limit: int = 20,
        first_id: str | None = None,
    ) -> dict[str, Any]:
        self._require_chat_app()
        messages = [
            {
                "id": f"{conversation_id}-msg-{index}",
                "conversation_id": conversation_id,
                "query": f"question {index}",
                "answer": f"[mock] answer {index}",
                "status": "normal",
                "created_at": 1_700_000_000 + index * 60,
            }
            for index in range(2)
        ]
        return {"data": messages[:limit], "has_more": False, "limit": limit}
