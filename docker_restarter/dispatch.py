"""RestartDispatcher — restarts every target of a rule for one matching line.

Calls for the targets of one line run concurrently (bounded by a semaphore)
and are joined before ``dispatch()`` returns, so the caller sees every result
and shutdown never leaves detached tasks behind.

Per target:
- the blocking runtime call runs in ``asyncio.to_thread``
- it is bounded by ``timeout_seconds``; a slower call counts as failed
- a failure is logged with the target and the error, recorded in the
  result, and never retried or raised
"""

from __future__ import annotations

import asyncio
import time
from typing import Sequence

from docker_restarter.exceptions import RestartDispatchError, RestarterError
from docker_restarter.logging import get_logger
from docker_restarter.models import DispatchResult
from docker_restarter.runtime import ContainerRuntime

log = get_logger(__name__)


class RestartDispatcher:
    """Fan-out of restart commands to the container runtime."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        stop_timeout: int = 10,
        timeout_seconds: float = 60.0,
        max_concurrency: int = 4,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._runtime = runtime
        self._stop_timeout = stop_timeout
        self._timeout = timeout_seconds
        self._max_concurrency = max_concurrency

    async def dispatch(self, targets: Sequence[str]) -> list[DispatchResult]:
        """Restart every target; return one result per target, in target order."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(target: str) -> DispatchResult:
            async with semaphore:
                return await self._restart_one(target)

        return list(await asyncio.gather(*(_bounded(t) for t in targets)))

    async def _restart_one(self, target: str) -> DispatchResult:
        start = time.monotonic()
        try:
            await self._call(target)
        except RestartDispatchError as exc:
            duration_ms = (time.monotonic() - start) * 1000
            log.error(
                "restart_failed",
                target=target,
                error=exc.reason,
                duration_ms=round(duration_ms, 1),
            )
            return DispatchResult(target, success=False, error=exc.reason, duration_ms=duration_ms)

        duration_ms = (time.monotonic() - start) * 1000
        log.info("restart_succeeded", target=target, duration_ms=round(duration_ms, 1))
        return DispatchResult(target, success=True, duration_ms=duration_ms)

    async def _call(self, target: str) -> None:
        """Run one restart, normalising every failure to RestartDispatchError."""
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._runtime.restart, target, self._stop_timeout),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RestartDispatchError(target, f"timed out after {self._timeout}s") from exc
        except RestarterError as exc:
            raise RestartDispatchError(target, exc.message) from exc
        except Exception as exc:
            raise RestartDispatchError(target, f"{type(exc).__name__}: {exc}") from exc
