"""Tests for parallel collection."""

import time

from deliberation.collector import Collector
from deliberation.errors import ErrorKind
from tests.conftest import MODELS


async def test_collect_returns_one_response_per_participant(model_manager):
    members = model_manager.resolve_participants(MODELS[:3])
    result = await Collector().collect("What is 6 x 7?", members)

    assert [r.model_id for r in result.responses] == MODELS[:3]
    assert all(r.succeeded for r in result.responses)
    assert not result.partial
    assert result.responses[0].text.startswith("answer-0")


async def test_failed_backend_yields_unsuccessful_response(model_manager, fake_backend):
    fake_backend.fail(MODELS[1], "collection", "quota")
    members = model_manager.resolve_participants(MODELS[:3])

    result = await Collector().collect("q?", members)

    failed = result.responses[1]
    assert not failed.succeeded
    assert failed.error_kind == ErrorKind.QUOTA
    assert failed.text == ""
    assert result.partial
    assert len(result.successful) == 2


async def test_slow_backend_times_out_without_blocking_others(model_manager, fake_backend):
    fake_backend.delay(MODELS[2], "collection", 5.0)
    members = model_manager.resolve_participants(MODELS[:3])

    start = time.monotonic()
    result = await Collector(max_call_timeout=0.2).collect("q?", members)

    assert time.monotonic() - start < 2.0
    assert result.responses[2].error_kind == ErrorKind.TIMEOUT
    assert [r.succeeded for r in result.responses] == [True, True, False]


def test_effective_timeout_is_capped(model_manager):
    member = model_manager.get_member(MODELS[0])
    assert member.timeout == 30.0
    assert Collector(max_call_timeout=10.0).effective_timeout(member) == 10.0
    assert Collector(max_call_timeout=60.0).effective_timeout(member) == 30.0


async def test_member_stats_track_failures(model_manager, fake_backend):
    fake_backend.fail(MODELS[0], "collection")
    members = model_manager.resolve_participants(MODELS[:3])
    await Collector().collect("q?", members)

    stats = members[0].get_stats()
    assert stats["failed_calls"] == 1
    assert stats["failures_by_kind"] == {"TRANSPORT": 1}
    assert members[1].get_stats()["successful_calls"] == 1
