"""Unit tests — models.py."""

from __future__ import annotations

import pytest

from docker_restarter.models import (
    END_OF_STREAM,
    DispatchResult,
    EndOfStream,
    EngineStats,
    PolicyState,
    SkipFirstPolicy,
)


@pytest.mark.unit
class TestSkipFirstPolicy:
    def test_active_starts_awaiting(self) -> None:
        policy = SkipFirstPolicy(active=True)
        assert policy.state == PolicyState.AWAITING_FIRST_MATCH

    def test_inactive_starts_armed(self) -> None:
        policy = SkipFirstPolicy(active=False)
        assert policy.state == PolicyState.ARMED

    def test_first_match_suppressed_then_armed(self) -> None:
        policy = SkipFirstPolicy(active=True)
        assert policy.record_match() is False
        assert policy.matches_seen == 1
        assert policy.state == PolicyState.ARMED
        assert policy.record_match() is True
        assert policy.record_match() is True
        assert policy.matches_seen == 3

    def test_inactive_never_suppresses(self) -> None:
        policy = SkipFirstPolicy(active=False)
        assert [policy.record_match() for _ in range(3)] == [True, True, True]
        assert policy.matches_seen == 3

    def test_armed_is_terminal(self) -> None:
        policy = SkipFirstPolicy(active=True)
        policy.record_match()
        for _ in range(10):
            policy.record_match()
            assert policy.state == PolicyState.ARMED


@pytest.mark.unit
class TestEndOfStream:
    def test_singleton(self) -> None:
        assert EndOfStream() is END_OF_STREAM
        assert repr(END_OF_STREAM) == "END_OF_STREAM"


@pytest.mark.unit
class TestEngineStats:
    def test_record_dispatch_counts_per_target(self) -> None:
        stats = EngineStats()
        stats.record_dispatch([
            DispatchResult("a", success=False, error="boom"),
            DispatchResult("b", success=True),
        ])
        assert stats.dispatches == 1
        assert stats.restarts_ok == 1
        assert stats.restarts_failed == 1

    def test_dispatch_result_to_dict(self) -> None:
        result = DispatchResult("a", success=True, duration_ms=12.345)
        assert result.to_dict() == {
            "target": "a",
            "success": True,
            "error": None,
            "duration_ms": 12.3,
        }
