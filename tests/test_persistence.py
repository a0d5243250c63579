"""Tests for the audit sinks."""

import json

import pytest

from deliberation.persistence import (
    AuditRecordExists,
    CompositeSink,
    CouncilDatabase,
    JsonAuditSink,
    MemoryAuditSink,
)

TRAIL = {
    "session_id": "s1",
    "question": "What is 6 x 7?",
    "state": "COMPLETE",
    "failure_reason": None,
    "responses": [{"model_id": "m1", "text": "42"}],
}


async def test_memory_sink_is_write_once():
    sink = MemoryAuditSink()
    await sink.record("s1", TRAIL)
    assert sink.records["s1"]["question"] == TRAIL["question"]
    with pytest.raises(AuditRecordExists):
        await sink.record("s1", TRAIL)


async def test_memory_sink_copies_the_trail():
    sink = MemoryAuditSink()
    trail = dict(TRAIL, responses=[])
    await sink.record("s1", trail)
    trail["responses"].append("late")
    assert sink.records["s1"]["responses"] == []


async def test_json_sink_writes_one_file_per_session(tmp_path):
    sink = JsonAuditSink(str(tmp_path / "sessions"))
    await sink.record("s1", TRAIL)

    path = tmp_path / "sessions" / "s1.json"
    assert json.loads(path.read_text()) == TRAIL
    with pytest.raises(AuditRecordExists):
        await sink.record("s1", TRAIL)


async def test_database_round_trip(tmp_path):
    db = CouncilDatabase(str(tmp_path / "council.db"))
    await db.initialize()
    await db.record("s1", TRAIL)
    await db.record("s2", dict(TRAIL, session_id="s2", state="FAILED", failure_reason="TIMEOUT"))

    record = await db.get_record("s1")
    assert record.state == "COMPLETE"
    assert record.trail == TRAIL
    assert await db.get_record("missing") is None

    recent = await db.recent(limit=5)
    assert [r.session_id for r in recent] == ["s2", "s1"]
    assert recent[0].failure_reason == "TIMEOUT"

    stats = await db.get_statistics()
    assert stats["total_sessions"] == 2
    assert stats["by_state"] == {"COMPLETE": 1, "FAILED": 1}


async def test_database_is_write_once(tmp_path):
    db = CouncilDatabase(str(tmp_path / "council.db"))
    await db.record("s1", TRAIL)
    with pytest.raises(AuditRecordExists):
        await db.record("s1", TRAIL)


async def test_composite_sink_writes_everywhere(tmp_path):
    memory = MemoryAuditSink()
    files = JsonAuditSink(str(tmp_path))
    await CompositeSink([memory, files]).record("s1", TRAIL)
    assert "s1" in memory.records
    assert (tmp_path / "s1.json").exists()


async def test_composite_sink_reports_first_error_after_trying_all(tmp_path):
    memory = MemoryAuditSink()
    await memory.record("s1", TRAIL)
    files = JsonAuditSink(str(tmp_path))

    with pytest.raises(AuditRecordExists):
        await CompositeSink([memory, files]).record("s1", TRAIL)
    assert (tmp_path / "s1.json").exists()
