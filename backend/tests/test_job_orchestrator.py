import threading
import time

import pytest

from app.application.jobs import (
    CANCELLED_MESSAGE,
    JobOrchestrator,
    JobValidationError,
    describe_failure,
)
from app.infra.engine.mock import encode_event
from app.infra.memory.store import InMemoryJobStore
from app.infra.ports.engine import (
    EngineHTTPError,
    EngineTimeoutError,
    EngineUnavailableError,
    StreamTransportError,
    WorkflowEnginePort,
)
from app.infra.ports.job_store import JobStoreError


class ScriptedEngine(WorkflowEnginePort):
    """Engine double that replays canned chunks and can be held at a gate."""

    def __init__(self, *, chunks=(), stream_error=None, blocking_result=None, blocking_error=None, gate=None):
        self.chunks = list(chunks)
        self.stream_error = stream_error
        self.blocking_result = blocking_result or {"answer": "ok"}
        self.blocking_error = blocking_error
        self.gate = gate
        self.entered = threading.Event()
        self.calls = 0
        self._lock = threading.Lock()

    def _enter(self):
        with self._lock:
            self.calls += 1
        self.entered.set()
        if self.gate is not None:
            assert self.gate.wait(timeout=5.0)

    def run_blocking(self, *, mode, payload, user):
        self._enter()
        if self.blocking_error is not None:
            raise self.blocking_error
        return dict(self.blocking_result, mode=mode, user=user)

    def run_streaming(self, *, payload, user):
        self._enter()
        yield from self.chunks
        if self.stream_error is not None:
            raise self.stream_error

    def list_conversations(self, *, user, limit=20, last_id=None):
        return {"data": []}

    def list_messages(self, *, conversation_id, user, limit=20, first_id=None):
        return {"data": []}


class RecordingStore(InMemoryJobStore):
    def __init__(self):
        super().__init__()
        self.history: list[tuple[str, int]] = []

    def update(self, job_id, **changes):
        record = super().update(job_id, **changes)
        if record is not None:
            self.history.append((record.status, record.progress))
        return record


def _workflow_chunks(text_count: int) -> list[bytes]:
    chunks = [encode_event({"event": "text_chunk", "workflow_run_id": "r1", "data": {"text": f"t{i};"}}) for i in range(text_count)]
    chunks.append(encode_event({"event": "workflow_finished", "workflow_run_id": "r1", "data": {"status": "succeeded"}}))
    return chunks


def _wait_terminal(store, job_id: str, timeout_seconds: float = 5.0):
    deadline = time.time() + timeout_seconds
    latest = None
    while time.time() < deadline:
        latest = store.get(job_id)
        if latest is not None and latest.is_terminal:
            return latest
        time.sleep(0.01)
    return latest


def _orchestrator(store, engine, **kwargs) -> JobOrchestrator:
    kwargs.setdefault("retry_delay_seconds", 0)
    kwargs.setdefault("sync_processing", True)
    return JobOrchestrator(store=store, engine=engine, **kwargs)


def test_workflow_end_to_end_with_background_processing():
    gate = threading.Event()
    store = RecordingStore()
    engine = ScriptedEngine(chunks=_workflow_chunks(150), gate=gate)
    orchestrator = _orchestrator(store, engine, sync_processing=False)

    job = orchestrator.start(type="workflow", user_id="u1", input={"inputs": {"input_text": "hello"}})

    early = orchestrator.get_status(job.job_id)
    assert early.status in {"pending", "processing"}
    assert 0 <= early.progress <= 25

    gate.set()
    done = _wait_terminal(store, job.job_id)

    assert done.status == "completed"
    assert done.progress == 100
    assert done.result["text_output"] == "".join(f"t{i};" for i in range(150))
    assert done.result["total_events"] == 151
    assert len(done.streaming_logs) == 151
    assert [entry.event for entry in done.streaming_logs][-1] == "workflow_finished"
    assert engine.calls == 1

    progresses = [progress for status, progress in store.history]
    assert progresses == sorted(progresses)
    assert all(progress < 100 for status, progress in store.history if status != "completed")
    assert orchestrator.active_jobs.snapshot() == set()


def test_duplicate_processing_calls_the_engine_once():
    gate = threading.Event()
    store = InMemoryJobStore()
    engine = ScriptedEngine(gate=gate)
    orchestrator = _orchestrator(store, engine)
    job = store.create(user_id="u1", type="chat", input={"query": "hi"})
    kwargs = {"type": "chat", "user_id": "u1", "input": {"query": "hi"}}

    worker = threading.Thread(target=orchestrator.process_job, args=(job.job_id,), kwargs=kwargs)
    worker.start()
    assert engine.entered.wait(timeout=5.0)

    orchestrator.process_job(job.job_id, **kwargs)
    assert orchestrator.active_jobs.is_active(job.job_id)

    gate.set()
    worker.join(timeout=5.0)

    assert engine.calls == 1
    assert store.get(job.job_id).status == "completed"
    assert not orchestrator.active_jobs.is_active(job.job_id)


def test_blocking_modes_move_through_checkpoints():
    store = RecordingStore()
    orchestrator = _orchestrator(store, ScriptedEngine(blocking_result={"answer": "42"}))

    job = orchestrator.start(type="completion", user_id="u9", input={"query": "meaning"})
    done = store.get(job.job_id)

    assert done.status == "completed"
    assert done.result["answer"] == "42"
    assert done.result["mode"] == "completion"
    assert store.history == [
        ("processing", 0),
        ("processing", 25),
        ("processing", 75),
        ("completed", 100),
    ]


@pytest.mark.parametrize(
    "body",
    [
        {"type": "workflow", "user_id": "u1", "input": None},
        {"type": None, "user_id": "u1", "input": {"inputs": {}}},
        {"type": "workflow", "user_id": "", "input": {"inputs": {"a": 1}}},
        {"type": "translate", "user_id": "u1", "input": {"query": "x"}},
        {"type": "chat", "user_id": "u1", "input": "just a string"},
        {"type": "chat", "user_id": "u1", "input": ["query"]},
    ],
)
def test_start_validation_creates_nothing(body):
    store = InMemoryJobStore()
    engine = ScriptedEngine()
    orchestrator = _orchestrator(store, engine)

    with pytest.raises(JobValidationError):
        orchestrator.start(**body)

    assert store.list_jobs() == []
    assert engine.calls == 0


def test_interrupted_stream_completes_with_warning():
    store = InMemoryJobStore()
    engine = ScriptedEngine(
        chunks=_workflow_chunks(2)[:2],
        stream_error=StreamTransportError("ECONNRESET", recoverable=True),
    )
    orchestrator = _orchestrator(store, engine)

    job = orchestrator.start(type="workflow", user_id="u1", input={"inputs": {}})
    done = store.get(job.job_id)

    assert done.status == "completed"
    assert done.progress == 100
    assert done.result["success"] is True
    assert done.result["interrupted"] is True
    assert done.result["total_events"] == 2
    assert done.result["text_output"] == "t0;t1;"
    assert done.result["warning"]
    assert done.result["suggestion"]
    assert len(done.streaming_logs) == 2


def test_fatal_stream_error_fails_the_job():
    store = InMemoryJobStore()
    engine = ScriptedEngine(
        chunks=_workflow_chunks(1)[:1],
        stream_error=StreamTransportError("certificate verify failed", recoverable=False),
    )
    orchestrator = _orchestrator(store, engine)

    job = orchestrator.start(type="workflow", user_id="u1", input={"inputs": {}})
    failed = store.get(job.job_id)

    assert failed.status == "failed"
    assert "certificate verify failed" in failed.error_message
    assert failed.result["error"] is True
    assert failed.result["errorDetails"]["type"] == "StreamTransportError"
    assert failed.completed_at is not None
    assert orchestrator.active_jobs.snapshot() == set()


@pytest.mark.parametrize(
    ("error", "fragment"),
    [
        (EngineHTTPError(504, "Gateway Timeout"), "likely still running"),
        (EngineTimeoutError("read timed out"), "likely still running"),
        (EngineUnavailableError("connection refused"), "network connectivity"),
        (EngineHTTPError(400, "invalid inputs"), "invalid inputs"),
        (RuntimeError("boom"), "Unexpected error: boom"),
    ],
)
def test_engine_failures_are_classified(error, fragment):
    store = InMemoryJobStore()
    orchestrator = _orchestrator(store, ScriptedEngine(blocking_error=error))

    job = orchestrator.start(type="chat", user_id="u1", input={"query": "q"})
    failed = store.get(job.job_id)

    assert failed.status == "failed"
    assert fragment in failed.error_message


def test_describe_failure_keeps_http_details():
    message, details = describe_failure(EngineHTTPError(502, "bad gateway"))

    assert "502" in message
    assert details["httpStatus"] == 502
    assert details["responseData"] == "bad gateway"
    assert details["type"] == "EngineHTTPError"


def test_empty_input_object_is_accepted():
    store = InMemoryJobStore()
    orchestrator = _orchestrator(store, ScriptedEngine())

    job = orchestrator.start(type="workflow", user_id="u1", input={})

    assert store.get(job.job_id).status == "completed"


@pytest.mark.parametrize("text_count", [5, 150])
def test_streaming_store_failures_do_not_lose_logs(text_count):
    class FlakyStore(InMemoryJobStore):
        def update(self, job_id, **changes):
            if "streaming_logs" in changes and "status" not in changes:
                raise JobStoreError("connection reset by peer")
            return super().update(job_id, **changes)

    store = FlakyStore()
    orchestrator = _orchestrator(store, ScriptedEngine(chunks=_workflow_chunks(text_count)))

    job = orchestrator.start(type="workflow", user_id="u1", input={"inputs": {}})
    done = store.get(job.job_id)

    assert done.status == "completed"
    assert done.result["text_output"] == "".join(f"t{i};" for i in range(text_count))
    assert done.result["total_events"] == text_count + 1
    assert len(done.streaming_logs) == done.result["total_events"]
    assert done.streaming_logs[-1].event == "workflow_finished"


def test_undecodable_record_does_not_escape_the_worker():
    class CorruptStore(InMemoryJobStore):
        def __init__(self):
            super().__init__()
            self.attempts = 0

        def update(self, job_id, **changes):
            self.attempts += 1
            raise ValueError("Unknown job status: 'exploded'")

    store = CorruptStore()
    orchestrator = _orchestrator(store, ScriptedEngine(), terminal_write_attempts=3)

    job = orchestrator.start(type="chat", user_id="u1", input={"query": "q"})

    # processing write, then a single rejected failed write; no retries of non-transient errors
    assert store.attempts == 2
    assert store.get(job.job_id).status == "pending"
    assert orchestrator.active_jobs.snapshot() == set()


def test_terminal_write_is_retried():
    class StubbornStore(InMemoryJobStore):
        def __init__(self):
            super().__init__()
            self.terminal_failures = 2

        def update(self, job_id, **changes):
            if changes.get("status") == "completed" and self.terminal_failures:
                self.terminal_failures -= 1
                raise JobStoreError("too many connections")
            return super().update(job_id, **changes)

    store = StubbornStore()
    orchestrator = _orchestrator(store, ScriptedEngine(), terminal_write_attempts=3)

    job = orchestrator.start(type="chat", user_id="u1", input={"query": "q"})

    assert store.terminal_failures == 0
    assert store.get(job.job_id).status == "completed"


def test_cancel_running_job_wins_over_late_completion():
    gate = threading.Event()
    store = InMemoryJobStore()
    engine = ScriptedEngine(gate=gate)
    orchestrator = _orchestrator(store, engine, sync_processing=False)

    job = orchestrator.start(type="chat", user_id="u1", input={"query": "q"})
    assert engine.entered.wait(timeout=5.0)

    cancelled = orchestrator.cancel(job.job_id)
    assert cancelled is not None
    assert cancelled.status == "failed"
    assert cancelled.error_message == CANCELLED_MESSAGE

    gate.set()
    deadline = time.time() + 5.0
    while orchestrator.active_jobs.is_active(job.job_id) and time.time() < deadline:
        time.sleep(0.01)

    final = store.get(job.job_id)
    assert final.status == "failed"
    assert final.error_message == CANCELLED_MESSAGE
    assert final.completed_at == cancelled.completed_at


def test_cancel_terminal_or_unknown_job_is_not_found():
    store = InMemoryJobStore()
    orchestrator = _orchestrator(store, ScriptedEngine())
    job = orchestrator.start(type="chat", user_id="u1", input={"query": "q"})
    before = store.get(job.job_id)

    assert orchestrator.cancel(job.job_id) is None
    assert orchestrator.cancel("job_nope") is None

    after = store.get(job.job_id)
    assert after.completed_at == before.completed_at
    assert after.result == before.result
