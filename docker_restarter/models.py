"""Runtime data models for the watch → match → restart pipeline.

Configuration-time models (``WatchRule``, ``Settings``) live in config.py and
are validated by Pydantic.  The classes here are plain dataclasses that only
exist while the process runs; nothing is persisted.

Key classes
-----------
LineEvent        — one log line + runtime timestamp (ephemeral)
EndOfStream      — sentinel returned by the reader when the stream closes
PolicyState      — AWAITING_FIRST_MATCH / ARMED
SkipFirstPolicy  — the only mutable matching state, owned by one engine
DispatchResult   — outcome of one restart call for one target
EngineStats      — counters exposed for logging and tests
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Stream items
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineEvent:
    """A single log line, trailing newline already stripped."""

    text: str
    timestamp: datetime | None = None


class EndOfStream:
    """Returned by ``LogStreamReader.next()`` once the runtime closes the stream."""

    _instance: "EndOfStream | None" = None

    def __new__(cls) -> "EndOfStream":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = EndOfStream()


# ---------------------------------------------------------------------------
# Skip-first policy
# ---------------------------------------------------------------------------


class PolicyState(str, Enum):
    """State machine of the skip-first policy.

    ::

        AWAITING_FIRST_MATCH ──(first qualifying match)──► ARMED

    ARMED is terminal for the process lifetime.
    """

    AWAITING_FIRST_MATCH = "awaiting_first_match"
    ARMED = "armed"


@dataclass
class SkipFirstPolicy:
    """Skip-first flag plus the monotonic ``matches_seen`` counter."""

    active: bool = False
    matches_seen: int = 0

    @property
    def state(self) -> PolicyState:
        if self.active and self.matches_seen == 0:
            return PolicyState.AWAITING_FIRST_MATCH
        return PolicyState.ARMED

    def record_match(self) -> bool:
        """Count a qualifying match.  Return True if it must trigger a restart."""
        suppress = self.state is PolicyState.AWAITING_FIRST_MATCH
        self.matches_seen += 1
        return not suppress


# ---------------------------------------------------------------------------
# Dispatch results
# ---------------------------------------------------------------------------


@dataclass
class DispatchResult:
    """Outcome of one restart call."""

    target: str
    success: bool
    error: str | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "target": self.target,
            "success": self.success,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class EngineStats:
    """Operational counters of one TriggerEngine."""

    lines_seen: int = 0
    matches: int = 0
    suppressed: int = 0
    dispatches: int = 0
    restarts_ok: int = 0
    restarts_failed: int = 0
    last_match_at: float | None = None
    started_at: float = field(default_factory=time.time)

    def record_dispatch(self, results: list[DispatchResult]) -> None:
        self.dispatches += 1
        for result in results:
            if result.success:
                self.restarts_ok += 1
            else:
                self.restarts_failed += 1
