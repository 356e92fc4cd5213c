import asyncio
from unittest.mock import patch

import pytest

from chime.core.gate import PresentationGate
from chime.core.identity import SessionIdentity
from chime.core.response import ResponseSubmissionFlow
from chime.datamodel import Attachment, GateState
from chime.errors import ResponsePersistFailure, StaleSubmission, SubmissionInProgress

from fakes import FakeSink, make_reminder


def build(held="r1", respond=True, identity="pm-1"):
    gate = PresentationGate()
    sink = FakeSink()
    notices = []
    flow = ResponseSubmissionFlow(gate, sink, SessionIdentity(identity), notify=notices.append)
    if held:
        gate.offer(make_reminder(held))
        if respond:
            gate.respond()
    return flow, gate, sink, notices


def test_submit_for_other_reminder_is_rejected_without_side_effects():
    flow, gate, sink, _ = build(held="y")
    with pytest.raises(StaleSubmission):
        asyncio.run(flow.submit("x", "done", [Attachment("a.txt", b"a")]))
    assert gate.state is GateState.RESPONDING
    assert gate.held_id == "y"
    assert sink.uploads == [] and sink.responses == []


def test_submit_requires_responding_state():
    flow, gate, sink, _ = build(respond=False)
    with pytest.raises(StaleSubmission):
        asyncio.run(flow.submit("r1", "done"))
    assert gate.state is GateState.SHOWING


def test_submit_requires_signed_in_identity():
    flow, gate, sink, _ = build(identity=None)
    with pytest.raises(StaleSubmission):
        asyncio.run(flow.submit("r1", "done"))
    assert gate.state is GateState.RESPONDING


def test_successful_submit_clears_gate():
    flow, gate, sink, notices = build()
    result = asyncio.run(flow.submit("r1", "all good", [Attachment("report.pdf", b"%PDF")]))

    assert gate.state is GateState.EMPTY
    assert result.skipped_files == []
    assert result.response.text == "all good"
    assert len(result.response.attachment_urls) == 1
    owner, name, content = sink.uploads[0]
    assert owner == "pm-1"
    assert name.endswith("_report.pdf")
    assert content == b"%PDF"
    assert notices[-1].type == "success"


def test_failed_attachment_is_skipped():
    flow, gate, sink, _ = build()
    sink.failing_uploads = {"bad.pdf"}
    files = [Attachment("good.png", b"1"), Attachment("bad.pdf", b"2")]

    result = asyncio.run(flow.submit("r1", "partial", files))

    assert result.skipped_files == ["bad.pdf"]
    assert len(result.response.attachment_urls) == 1
    assert result.response.attachment_urls[0].endswith("_good.png")
    assert gate.state is GateState.EMPTY


def test_persist_failure_keeps_gate_responding_for_retry():
    flow, gate, sink, notices = build()
    sink.fail_insert = 1

    with pytest.raises(ResponsePersistFailure):
        asyncio.run(flow.submit("r1", "first try"))
    assert gate.state is GateState.RESPONDING
    assert gate.held_id == "r1"
    assert notices[-1].type == "error"
    assert not flow.is_submitting

    asyncio.run(flow.submit("r1", "second try"))
    assert gate.state is GateState.EMPTY
    assert [r.text for r in sink.responses] == ["second try"]


def test_concurrent_submit_is_refused():
    async def scenario():
        flow, gate, sink, _ = build()
        sink.insert_gate = asyncio.Event()
        first = asyncio.get_running_loop().create_task(flow.submit("r1", "one"))
        await asyncio.sleep(0)
        assert flow.is_submitting

        with pytest.raises(SubmissionInProgress):
            await flow.submit("r1", "two")

        sink.insert_gate.set()
        await first
        assert len(sink.responses) == 1
        assert gate.state is GateState.EMPTY

    asyncio.run(scenario())


def test_gate_cleared_remotely_during_submit_is_left_alone():
    async def scenario():
        flow, gate, sink, _ = build()
        sink.insert_gate = asyncio.Event()
        task = asyncio.get_running_loop().create_task(flow.submit("r1", "late"))
        await asyncio.sleep(0)

        gate.force_clear("removed remotely")
        gate.offer(make_reminder("r2"))
        sink.insert_gate.set()
        await task

        assert gate.state is GateState.SHOWING
        assert gate.held_id == "r2"

    asyncio.run(scenario())


def test_same_named_attachments_get_distinct_stored_names():
    flow, gate, sink, _ = build()
    files = [Attachment("photo.png", b"first"), Attachment("photo.png", b"second")]

    with patch("chime.core.response.ULID", side_effect=["01J00000000000000000000000", "01J00000000000000000000001"]):
        result = asyncio.run(flow.submit("r1", "two photos", files))

    names = [name for _, name, _ in sink.uploads]
    assert names == ["01J00000000000000000000000_photo.png", "01J00000000000000000000001_photo.png"]
    assert len(set(result.response.attachment_urls)) == 2
    assert [content for _, _, content in sink.uploads] == [b"first", b"second"]
