"""Incremental parser for the engine's streamed workflow events.

The engine answers a streaming run with newline-delimited records of the
form ``data: {json}``. Chunks arrive at arbitrary byte boundaries, so the
adapter keeps a carry-over buffer and only parses complete lines.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from app.domain.models import StreamEvent, StreamSummary, utc_now_iso
from app.infra.ports.engine import StreamTransportError

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "data: "
TEXT_CHUNK_EVENT = "text_chunk"
WORKFLOW_FINISHED_EVENT = "workflow_finished"

INTERRUPTED_NOTE = (
    "Connection was interrupted. The result is partial and the workflow may "
    "have finished on the engine side."
)


class WorkflowStreamAdapter:
    def __init__(self, *, prefix: str = DEFAULT_PREFIX, job_id: str | None = None):
        self.prefix = prefix
        self.job_id = job_id or "-"
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._sequence = 0
        self._text_parts: list[str] = []
        self._final: dict[str, Any] | None = None
        self._first_run_id: str | None = None
        self.summary: StreamSummary | None = None

    @property
    def event_count(self) -> int:
        return self._sequence

    @property
    def text_output(self) -> str:
        return "".join(self._text_parts)

    def _parse_line(self, line: str) -> StreamEvent | None:
        if line.endswith("\r"):
            line = line[:-1]
        if not line.strip() or not line.startswith(self.prefix):
            return None

        raw = line[len(self.prefix):]
        try:
            record = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[stream %s] dropping unparseable record: %.200s", self.job_id, raw)
            return None
        if not isinstance(record, dict):
            logger.warning("[stream %s] dropping non-object record: %.200s", self.job_id, raw)
            return None

        kind = record.get("event")
        kind = kind if isinstance(kind, str) else "unknown"

        self._sequence += 1
        event = StreamEvent(sequence=self._sequence, timestamp=utc_now_iso(), event=kind, payload=record)
        self._accumulate(event)
        return event

    def _accumulate(self, event: StreamEvent) -> None:
        record = event.payload
        if self._first_run_id is None and isinstance(record.get("workflow_run_id"), str):
            self._first_run_id = record["workflow_run_id"]

        if event.event == TEXT_CHUNK_EVENT:
            data = record.get("data")
            text = data.get("text") if isinstance(data, dict) else None
            if isinstance(text, str):
                self._text_parts.append(text)
        elif event.event == WORKFLOW_FINISHED_EVENT:
            self._final = record

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one chunk and return the events completed by it."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")

        events: list[StreamEvent] = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def _flush(self) -> list[StreamEvent]:
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        event = self._parse_line(tail)
        return [event] if event is not None else []

    def _workflow_data(self) -> dict[str, Any]:
        data = (self._final or {}).get("data")
        return dict(data) if isinstance(data, dict) else {}

    def _run_id(self) -> str | None:
        run_id = (self._final or {}).get("workflow_run_id")
        return run_id if isinstance(run_id, str) else self._first_run_id

    def finish(self) -> StreamSummary:
        self.summary = StreamSummary(
            total_events=self._sequence,
            text_output=self.text_output,
            workflow_data=self._workflow_data(),
            completed_at=utc_now_iso(),
            workflow_run_id=self._run_id(),
        )
        logger.info(
            "[stream %s] completed: %d events, %d chars of text, finished event=%s",
            self.job_id,
            self._sequence,
            len(self.summary.text_output),
            self._final is not None,
        )
        return self.summary

    def interrupt(self, exc: BaseException) -> StreamSummary:
        self.summary = StreamSummary(
            total_events=self._sequence,
            text_output=self.text_output,
            workflow_data=self._workflow_data(),
            completed_at=utc_now_iso(),
            workflow_run_id=self._run_id(),
            interrupted=True,
            note=INTERRUPTED_NOTE,
        )
        logger.warning(
            "[stream %s] interrupted after %d events (%s); treating as partial success",
            self.job_id,
            self._sequence,
            exc,
        )
        return self.summary

    def iterate(self, chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
        """Yield events as chunks arrive; ``summary`` is set once this is exhausted.

        A recoverable transport error ends the stream with an interrupted
        summary. Fatal errors propagate to the caller.
        """
        try:
            for chunk in chunks:
                yield from self.feed(chunk)
        except StreamTransportError as exc:
            if not exc.recoverable:
                raise
            self.interrupt(exc)
            return

        yield from self._flush()
        self.finish()
