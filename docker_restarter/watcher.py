"""LogWatcher — one background task running reader → engine for one rule.

Contract
--------
- ``start()``    — starts the background asyncio task
- ``stop()``     — cancels the task, abandons any in-flight dispatch and
                   closes the log stream
- ``is_running`` — True between start() and stop()
- ``wait()``     — returns once the task exits on its own

Exceptions never propagate out of the task: a crash is logged and recorded
in ``error``.  With the default unbounded reconnect policy the task only
ends on ``stop()``.
"""

from __future__ import annotations

import asyncio

from docker_restarter.engine import TriggerEngine
from docker_restarter.logging import bind_watch_context, clear_watch_context, get_logger
from docker_restarter.stream import LogStreamReader

log = get_logger(__name__)


class LogWatcher:
    """Glues one LogStreamReader to one TriggerEngine."""

    def __init__(self, reader: LogStreamReader, engine: TriggerEngine) -> None:
        self._reader = reader
        self._engine = engine
        self._task: asyncio.Task[None] | None = None
        self.error: str | None = None  # set on unrecoverable failure

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._reader.container

    @property
    def engine(self) -> TriggerEngine:
        return self._engine

    @property
    def reader(self) -> LogStreamReader:
        return self._reader

    async def start(self) -> None:
        """Start the watcher background task."""
        if self._task is not None and not self._task.done():
            return  # already running
        self.error = None
        self._task = asyncio.create_task(self._guarded_run(), name=f"watch_{self.name}")
        log.info(
            "watcher_started",
            watch=self.name,
            restart=list(self._engine.rule.restart),
            pattern=self._engine.rule.pattern,
            skip_first=self._engine.rule.skip_first,
        )

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reader.close()
        log.info(
            "watcher_stopped",
            watch=self.name,
            matches_seen=self._engine.matches_seen,
            dispatches=self._engine.stats.dispatches,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait(self) -> None:
        """Wait until the task exits on its own (crash or retries exhausted)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _guarded_run(self) -> None:
        """Wrap the pipeline so exceptions don't kill the event loop."""
        bind_watch_context(self.name)
        try:
            await self._engine.run(self._reader.lines())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.error = str(exc)
            log.error("watcher_crashed", watch=self.name, error=str(exc))
        finally:
            clear_watch_context()
