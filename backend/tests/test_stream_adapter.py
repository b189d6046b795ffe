import pytest

from app.application.stream import WorkflowStreamAdapter
from app.infra.engine.mock import encode_event
from app.infra.ports.engine import StreamTransportError


def _sample_stream() -> bytes:
    records = [
        {"event": "workflow_started", "workflow_run_id": "run-1", "data": {}},
        {"event": "text_chunk", "workflow_run_id": "run-1", "data": {"text": "안녕 "}},
        {"event": "node_started", "workflow_run_id": "run-1", "data": {"node_id": "n1"}},
        {"event": "text_chunk", "workflow_run_id": "run-1", "data": {"text": "world"}},
        {"event": "workflow_finished", "workflow_run_id": "run-1", "data": {"outputs": {"answer": 42}}},
    ]
    return b"event: ping\n\n" + b"".join(encode_event(record) for record in records)


def _collect(chunks) -> tuple[list[tuple[int, str, dict]], WorkflowStreamAdapter]:
    adapter = WorkflowStreamAdapter()
    events = [(event.sequence, event.event, event.payload) for event in adapter.iterate(chunks)]
    return events, adapter


def test_single_chunk_produces_ordered_events_and_summary():
    events, adapter = _collect([_sample_stream()])

    assert [seq for seq, _, _ in events] == [1, 2, 3, 4, 5]
    assert [kind for _, kind, _ in events] == [
        "workflow_started",
        "text_chunk",
        "node_started",
        "text_chunk",
        "workflow_finished",
    ]
    summary = adapter.summary
    assert summary is not None
    assert summary.success is True
    assert summary.interrupted is False
    assert summary.total_events == 5
    assert summary.text_output == "안녕 world"
    assert summary.workflow_data == {"outputs": {"answer": 42}}
    assert summary.workflow_run_id == "run-1"


@pytest.mark.parametrize("size", [1, 2, 3, 7, 64])
def test_chunk_boundaries_do_not_change_the_event_sequence(size):
    payload = _sample_stream()
    expected, _ = _collect([payload])

    chunks = [payload[i : i + size] for i in range(0, len(payload), size)]
    actual, adapter = _collect(chunks)

    assert actual == expected
    assert adapter.summary.text_output == "안녕 world"


def test_malformed_and_foreign_lines_are_dropped():
    stream = (
        b"data: {not json}\n"
        b"data: [1, 2, 3]\n"
        b": keep-alive comment\n"
        b"data: {\"event\": \"text_chunk\", \"data\": {\"text\": \"ok\"}}\r\n"
    )
    events, adapter = _collect([stream])

    assert [(seq, kind) for seq, kind, _ in events] == [(1, "text_chunk")]
    assert adapter.summary.text_output == "ok"
    assert adapter.summary.workflow_data == {}


def test_last_finished_event_wins():
    stream = encode_event({"event": "workflow_finished", "data": {"n": 1}}) + encode_event(
        {"event": "workflow_finished", "workflow_run_id": "run-2", "data": {"n": 2}}
    )
    _, adapter = _collect([stream])

    assert adapter.summary.workflow_data == {"n": 2}
    assert adapter.summary.workflow_run_id == "run-2"
    assert adapter.summary.total_events == 2


def test_trailing_record_without_newline_is_flushed_at_end():
    stream = b'data: {"event": "text_chunk", "data": {"text": "a"}}\ndata: {"event": "text_chunk", "data": {"text": "b"}}'
    events, adapter = _collect([stream])

    assert len(events) == 2
    assert adapter.summary.text_output == "ab"


def test_recoverable_interruption_yields_partial_summary():
    def chunks():
        yield encode_event({"event": "workflow_started", "data": {}})
        yield encode_event({"event": "text_chunk", "data": {"text": "part"}})
        yield b'data: {"event": "text_ch'
        raise StreamTransportError("connection reset", recoverable=True)

    events, adapter = _collect(chunks())

    assert len(events) == 2
    summary = adapter.summary
    assert summary.success is True
    assert summary.interrupted is True
    assert summary.total_events == 2
    assert summary.text_output == "part"
    assert summary.note

    result = summary.to_result()
    assert result["interrupted"] is True
    assert result["note"] == summary.note


def test_interruption_before_any_event_is_still_partial_success():
    def chunks():
        raise StreamTransportError("aborted", recoverable=True)
        yield b""  # pragma: no cover

    events, adapter = _collect(chunks())

    assert events == []
    assert adapter.summary.success is True
    assert adapter.summary.total_events == 0


def test_fatal_transport_error_propagates():
    def chunks():
        yield encode_event({"event": "workflow_started", "data": {}})
        raise StreamTransportError("tls failure", recoverable=False)

    adapter = WorkflowStreamAdapter()
    with pytest.raises(StreamTransportError):
        list(adapter.iterate(chunks()))
    assert adapter.summary is None


def test_feed_keeps_partial_record_until_completed():
    adapter = WorkflowStreamAdapter()

    assert adapter.feed(b'data: {"event": "text_') == []
    events = adapter.feed(b'chunk", "data": {"text": "x"}}\n')

    assert [event.event for event in events] == ["text_chunk"]
    assert events[0].sequence == 1
    assert adapter.event_count == 1
