"""Shared pytest fixtures for the docker-restarter test suite."""

from __future__ import annotations

import threading
import time
from collections import deque
from datetime import datetime
from typing import Iterator

import pytest

from docker_restarter.config import WatchRule
from docker_restarter.dispatch import RestartDispatcher
from docker_restarter.exceptions import ContainerNotFoundError, StreamConnectionError
from docker_restarter.runtime import ContainerRuntime, LogChunkStream


# ---------------------------------------------------------------------------
# In-memory container runtime
# ---------------------------------------------------------------------------


class FakeLogStream(LogChunkStream):
    """Yields scripted chunks, then ends, raises, or blocks until closed."""

    def __init__(
        self,
        chunks: list[bytes],
        error: Exception | None = None,
        block: bool = False,
    ) -> None:
        self._chunks = chunks
        self._error = error
        self._block = block
        self.closed = threading.Event()

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            if self.closed.is_set():
                return
            yield chunk
        if self._error is not None:
            raise self._error
        if self._block:
            self.closed.wait(timeout=5)

    def close(self) -> None:
        self.closed.set()


class FakeRuntime(ContainerRuntime):
    """Scripted runtime: queue log streams, record restarts, inject failures."""

    def __init__(self) -> None:
        self._streams: deque[FakeLogStream | Exception] = deque()
        self.opened: list[tuple[str, datetime | None]] = []
        self.restarts: list[str] = []
        self.restart_timeouts: list[int] = []
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.known: set[str] | None = None
        self.closed = False
        self._lock = threading.Lock()

    def add_stream(
        self,
        *lines: str | bytes,
        error: Exception | None = None,
        block: bool = False,
    ) -> FakeLogStream:
        chunks = [
            line if isinstance(line, bytes) else (line + "\n").encode()
            for line in lines
        ]
        stream = FakeLogStream(chunks, error=error, block=block)
        self._streams.append(stream)
        return stream

    def add_open_failure(self, reason: str = "connection refused") -> None:
        self._streams.append(StreamConnectionError("fake", reason))

    def stream_logs(self, container: str, since: datetime | None) -> LogChunkStream:
        self.opened.append((container, since))
        if not self._streams:
            raise StreamConnectionError(container, "no stream scripted")
        item = self._streams.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    def restart(self, container: str, timeout: int) -> None:
        if container in self.delays:
            time.sleep(self.delays[container])
        if self.known is not None and container not in self.known:
            raise ContainerNotFoundError(container)
        if container in self.failures:
            raise self.failures[container]
        with self._lock:
            self.restarts.append(container)
            self.restart_timeouts.append(timeout)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def dispatcher(runtime: FakeRuntime) -> RestartDispatcher:
    return RestartDispatcher(runtime, stop_timeout=5, timeout_seconds=2.0, max_concurrency=4)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@pytest.fixture
def rule() -> WatchRule:
    return WatchRule(watch="logger", restart="a,b", pattern="hello_world", skip_first=True)


@pytest.fixture
def rule_no_skip() -> WatchRule:
    return WatchRule(watch="logger", restart="a,b", pattern="hello_world", skip_first=False)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point HOME at an empty directory so no user config.yaml is picked up."""
    monkeypatch.setenv("HOME", str(tmp_path))
    for var in ("RESTARTER_RULES", "RESTARTER_DOCKER__BASE_URL", "RESTARTER_LOGGING__LEVEL"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path
