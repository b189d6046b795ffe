from __future__ import annotations

import threading
from typing import Literal

Phase = Literal["submitted", "accepted", "streaming", "blocking_returned", "complete"]

SUBMITTED = 0
ACCEPTED = 25
STREAM_CEILING = 75
BLOCKING_RETURNED = 75
COMPLETE = 100

_ALWAYS_PERSIST = frozenset({"workflow_started", "workflow_finished"})


def estimate_progress(phase: Phase, events_seen: int = 0, *, events_for_full_band: int = 100) -> int:
    """Map a job phase (and streamed event count) onto 0-100.

    Streaming climbs linearly from ACCEPTED and stops at STREAM_CEILING;
    only the final persisted write may report COMPLETE.
    """
    if phase == "submitted":
        return SUBMITTED
    if phase == "accepted":
        return ACCEPTED
    if phase == "blocking_returned":
        return BLOCKING_RETURNED
    if phase == "complete":
        return COMPLETE
    if phase != "streaming":
        raise ValueError(f"Unknown progress phase: {phase}")

    span = STREAM_CEILING - ACCEPTED
    seen = max(0, events_seen)
    step = (seen * span) // max(1, events_for_full_band)
    return min(STREAM_CEILING, ACCEPTED + step)


def should_persist(event_kind: str, events_seen: int, *, every: int = 100) -> bool:
    """Throttle for streaming writes: every Nth event, plus start/finish/error events."""
    if event_kind in _ALWAYS_PERSIST or "error" in event_kind:
        return True
    return every > 0 and events_seen > 0 and events_seen % every == 0


class ProgressTracker:
    """Hands out progress values per job that never go backwards."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: dict[str, int] = {}

    def advance(self, job_id: str, value: int) -> int:
        with self._lock:
            current = max(self._latest.get(job_id, SUBMITTED), max(0, min(COMPLETE, value)))
            self._latest[job_id] = current
            return current

    def current(self, job_id: str) -> int:
        with self._lock:
            return self._latest.get(job_id, SUBMITTED)

    def forget(self, job_id: str) -> None:
        with self._lock:
            self._latest.pop(job_id, None)
