"""TriggerEngine — pattern matching, skip-first policy and restart dispatch.

Per line::

    pattern not in line              → discard, no state change
    match while AWAITING_FIRST_MATCH → count it, log it, no restart
    any other match                  → count it, restart every target

Lines are processed strictly one at a time: the dispatch for line N is joined
before line N+1 is requested from the reader.  The policy counter is decided
once per line before dispatch starts, so dispatch concurrency never feeds back
into it.  There is no cooldown: each qualifying match dispatches again.
"""

from __future__ import annotations

import time
from typing import AsyncIterator

from docker_restarter.config import WatchRule
from docker_restarter.dispatch import RestartDispatcher
from docker_restarter.logging import get_logger
from docker_restarter.models import DispatchResult, EngineStats, LineEvent, SkipFirstPolicy

log = get_logger(__name__)


def is_match(pattern: str, text: str) -> bool:
    """Exact, case-sensitive substring match."""
    return pattern in text


class TriggerEngine:
    """Decides, for every line of one watched container, whether to restart."""

    def __init__(
        self,
        rule: WatchRule,
        dispatcher: RestartDispatcher,
        policy: SkipFirstPolicy | None = None,
    ) -> None:
        self._rule = rule
        self._dispatcher = dispatcher
        self._policy = policy or SkipFirstPolicy(active=rule.skip_first)
        self.stats = EngineStats()

    @property
    def rule(self) -> WatchRule:
        return self._rule

    @property
    def policy(self) -> SkipFirstPolicy:
        return self._policy

    @property
    def matches_seen(self) -> int:
        return self._policy.matches_seen

    async def process(self, event: LineEvent) -> list[DispatchResult]:
        """Handle one line.  Return the dispatch results (empty if nothing was restarted)."""
        self.stats.lines_seen += 1
        log.debug("line_received", watch=self._rule.watch, text=event.text)

        if not is_match(self._rule.pattern, event.text):
            return []

        self.stats.matches += 1
        self.stats.last_match_at = time.time()
        state_before = self._policy.state
        if not self._policy.record_match():
            self.stats.suppressed += 1
            log.info(
                "pattern_match_skipped",
                watch=self._rule.watch,
                pattern=self._rule.pattern,
                line=event.text,
                state=state_before.value,
                matches_seen=self._policy.matches_seen,
            )
            return []

        log.info(
            "pattern_matched",
            watch=self._rule.watch,
            pattern=self._rule.pattern,
            line=event.text,
            matches_seen=self._policy.matches_seen,
            targets=list(self._rule.restart),
        )
        results = await self._dispatcher.dispatch(self._rule.restart)
        self.stats.record_dispatch(results)

        failed = [r.target for r in results if not r.success]
        log.info(
            "dispatch_completed",
            watch=self._rule.watch,
            succeeded=len(results) - len(failed),
            failed=failed,
        )
        return results

    async def run(self, lines: AsyncIterator[LineEvent]) -> None:
        """Consume *lines* until the iterator ends or the task is cancelled."""
        async for event in lines:
            await self.process(event)
