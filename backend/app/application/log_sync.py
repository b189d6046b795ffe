"""Pulls conversation history from the engine into the local log store.

Only chat-style apps keep conversations. A workflow app answers the
listing call with ``not_chat_app``, which ends the sync without error.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.domain.models import utc_now_iso
from app.infra.ports.engine import EngineHTTPError, WorkflowEnginePort
from app.infra.ports.job_store import JobStoreError
from app.infra.ports.log_store import LogStorePort

logger = logging.getLogger(__name__)

NOT_CHAT_APP = "not_chat_app"


@dataclass
class LogSyncReport:
    conversations: int = 0
    messages: int = 0
    failed: int = 0
    skipped: bool = False
    fetched_at: str = ""


def _message_created_at(message: dict[str, Any], fallback: str) -> str:
    raw = message.get("created_at")
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw, tz=timezone.utc).isoformat()
    return fallback


class LogSyncService:
    def __init__(self, *, engine: WorkflowEnginePort, store: LogStorePort, user: str = "system", limit: int = 50):
        self.engine = engine
        self.store = store
        self.user = user
        self.limit = limit

    def fetch_and_store(self) -> LogSyncReport:
        report = LogSyncReport(fetched_at=utc_now_iso())
        try:
            conversations = self.engine.list_conversations(user=self.user, limit=self.limit).get("data") or []
        except EngineHTTPError as exc:
            if exc.code == NOT_CHAT_APP:
                logger.info("Skipping log sync: the engine app is not a chat app")
                report.skipped = True
                return report
            raise

        if not conversations:
            logger.info("Log sync: no conversations found")
            return report

        for conversation in conversations:
            conversation_id = conversation.get("id") if isinstance(conversation, dict) else None
            if not isinstance(conversation_id, str):
                logger.warning("Log sync: skipping conversation without an id: %.200r", conversation)
                continue
            report.conversations += 1
            owner = conversation.get("user_id") or self.user

            page = self.engine.list_messages(conversation_id=conversation_id, user=self.user, limit=self.limit)
            for message in page.get("data") or []:
                if not isinstance(message, dict) or not isinstance(message.get("id"), str):
                    logger.warning("Log sync: skipping message without an id in %s", conversation_id)
                    continue
                try:
                    self.store.upsert(
                        engine_log_id=message["id"],
                        log_type="message",
                        content=message,
                        user_id=owner,
                        status=str(message.get("status") or "unknown"),
                        created_at=_message_created_at(message, report.fetched_at),
                        fetched_at=report.fetched_at,
                    )
                except JobStoreError as exc:
                    report.failed += 1
                    logger.error("Log sync: could not save message %s: %s", message["id"], exc)
                    continue
                report.messages += 1

        logger.info(
            "Log sync stored %d messages from %d conversations (%d failed)",
            report.messages,
            report.conversations,
            report.failed,
        )
        return report


class LogSyncScheduler:
    """Runs ``fetch_and_store`` every ``interval_seconds`` on a daemon thread."""

    def __init__(self, service: LogSyncService, *, interval_seconds: float):
        self.service = service
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="log-sync", daemon=True)
        self._thread.start()
        logger.info("Log sync scheduled every %ss", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> LogSyncReport | None:
        try:
            return self.service.fetch_and_store()
        except Exception:
            logger.exception("Scheduled log sync failed")
            return None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()
