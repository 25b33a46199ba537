"""Supervisor — owns one LogWatcher per configured rule.

Each rule gets its own reader, engine and skip-first state; rules never share
state.  All watchers share a single ContainerRuntime (one client connection).

Lifecycle::

    supervisor = Supervisor.from_settings(settings)
    await supervisor.run()          # until SIGINT / SIGTERM

``run()`` returns when the stop event is set or when every watcher has
exited on its own (only possible with a bounded reconnect policy).
"""

from __future__ import annotations

import asyncio
import signal
from typing import Sequence

from docker_restarter.config import DispatchConfig, Settings, StreamConfig, WatchRule
from docker_restarter.dispatch import RestartDispatcher
from docker_restarter.engine import TriggerEngine
from docker_restarter.exceptions import ConfigurationError
from docker_restarter.logging import get_logger
from docker_restarter.runtime import ContainerRuntime, DockerRuntime
from docker_restarter.stream import LogStreamReader
from docker_restarter.watcher import LogWatcher

log = get_logger(__name__)


class Supervisor:
    """Runs every watch rule until shutdown."""

    def __init__(
        self,
        rules: Sequence[WatchRule],
        runtime: ContainerRuntime,
        *,
        stream: StreamConfig | None = None,
        dispatch: DispatchConfig | None = None,
        stop_timeout: int = 10,
    ) -> None:
        if not rules:
            raise ConfigurationError("At least one watch rule is required")
        self._rules = list(rules)
        self._runtime = runtime
        self._stream = stream or StreamConfig()
        self._dispatch = dispatch or DispatchConfig()
        self._stop_timeout = stop_timeout
        self._watchers: list[LogWatcher] = []
        self._started = False

    @classmethod
    def from_settings(
        cls, settings: Settings, runtime: ContainerRuntime | None = None
    ) -> "Supervisor":
        return cls(
            settings.require_rules(),
            runtime or DockerRuntime(base_url=settings.docker.base_url),
            stream=settings.stream,
            dispatch=settings.dispatch,
            stop_timeout=settings.docker.stop_timeout,
        )

    @property
    def watchers(self) -> list[LogWatcher]:
        return list(self._watchers)

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        """Build and start one watcher per rule."""
        if self._started:
            return
        self._started = True
        self._watchers = [self._build(rule) for rule in self._rules]
        for watcher in self._watchers:
            await watcher.start()
        log.info("supervisor_started", rules=len(self._watchers))

    async def stop(self) -> None:
        """Stop all watchers concurrently."""
        if not self._started:
            return
        self._started = False
        await asyncio.gather(
            *(w.stop() for w in self._watchers),
            return_exceptions=True,
        )
        log.info("supervisor_stopped")

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Start, block until *stop_event* is set (or SIGINT/SIGTERM), then stop."""
        if stop_event is None:
            stop_event = asyncio.Event()
            _install_signal_handlers(stop_event)

        await self.start()
        stop_waiter = asyncio.create_task(stop_event.wait(), name="supervisor_stop")
        watchers_done = asyncio.create_task(self._wait_watchers(), name="supervisor_watchers")
        try:
            await asyncio.wait(
                {stop_waiter, watchers_done},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (stop_waiter, watchers_done):
                task.cancel()
            await asyncio.gather(stop_waiter, watchers_done, return_exceptions=True)
            await self.stop()
            self._runtime.close()

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    def _build(self, rule: WatchRule) -> LogWatcher:
        reader = LogStreamReader(
            self._runtime,
            rule.watch,
            start_from=self._stream.start_from,
            backoff_base_seconds=self._stream.backoff_base_seconds,
            backoff_cap_seconds=self._stream.backoff_cap_seconds,
            max_reconnect_attempts=self._stream.max_reconnect_attempts,
        )
        dispatcher = RestartDispatcher(
            self._runtime,
            stop_timeout=self._stop_timeout,
            timeout_seconds=self._dispatch.timeout_seconds,
            max_concurrency=self._dispatch.max_concurrency,
        )
        return LogWatcher(reader, TriggerEngine(rule, dispatcher))

    async def _wait_watchers(self) -> None:
        await asyncio.gather(*(w.wait() for w in self._watchers))
        errors = {w.name: w.error for w in self._watchers if w.error}
        log.warning("all_watchers_exited", errors=errors)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops, or not running in the main thread.
            log.debug("signal_handler_unavailable", signal=sig.name)
