"""LogStreamReader — turns a container's log output into an endless line sequence.

Contract
--------
- ``open()``   — connect to the watched container's log stream
- ``next()``   — next ``LineEvent``, or ``END_OF_STREAM`` once the runtime closes it
- ``lines()``  — async iterator that never ends on its own: reconnects with
                 exponential backoff whenever the stream cannot be opened, is
                 lost, or ends (the watched container stopped or restarted)
- ``close()``  — release the stream handle

Reconnection semantics
----------------------
The first connection starts from "now" or from the start of the log
(``start_from``).  A reconnection resumes at the timestamp of the last line
handed out (or, before any timestamp was seen, at the moment the previous
stream closed), so lines written during the backoff sleep are not lost.  The
overlap is dropped: after a reconnect any line whose runtime timestamp is not
newer than the last line handed out is discarded, so no line is processed
twice and the engine's skip-first state cannot be corrupted.

The backoff attempt counter only resets once a stream delivers a line.  A
stopped container accepts the follow request and ends the stream at once;
those empty rounds keep backing off like failed opens.

Blocking reads run in ``asyncio.to_thread``.  Closing the stream from the
event loop unblocks a pending read.
"""

from __future__ import annotations

import asyncio
import re
from collections import deque
from datetime import datetime, timezone
from typing import AsyncIterator, Iterator, Literal

from docker_restarter.exceptions import StreamConnectionError
from docker_restarter.logging import get_logger
from docker_restarter.models import END_OF_STREAM, EndOfStream, LineEvent
from docker_restarter.runtime import ContainerRuntime, LogChunkStream

log = get_logger(__name__)

MAX_BUFFER_SIZE = 10 * 1024 * 1024  # 10MB without a newline

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Delay before reconnect number ``attempt + 1``: ``min(cap, base * 2**attempt)``."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # Avoid huge intermediate floats once the cap is reached.
    if attempt > 32:
        return cap
    return min(cap, base * (2**attempt))


def parse_timestamp(token: str) -> datetime | None:
    """Parse a Docker RFC3339Nano timestamp, truncating to microseconds."""
    m = _TIMESTAMP_RE.match(token)
    if m is None:
        return None
    base, fraction, tz = m.groups()
    fraction = (fraction or "0")[:6].ljust(6, "0")
    if tz == "Z":
        tz = "+00:00"
    try:
        return datetime.fromisoformat(f"{base}.{fraction}{tz}")
    except ValueError:
        return None


def split_line(raw: bytes) -> LineEvent:
    """Decode one raw log line and split off its timestamp prefix, if any."""
    text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
    token, _, rest = text.partition(" ")
    timestamp = parse_timestamp(token)
    if timestamp is not None:
        return LineEvent(text=rest, timestamp=timestamp)
    return LineEvent(text=text)


class LogStreamReader:
    """Reads the log stream of one container.  Owns the stream handle exclusively."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        container: str,
        *,
        start_from: Literal["now", "start"] = "now",
        backoff_base_seconds: float = 1.0,
        backoff_cap_seconds: float = 30.0,
        max_reconnect_attempts: int = 0,
    ) -> None:
        self._runtime = runtime
        self._container = container
        self._start_from = start_from
        self._backoff_base = backoff_base_seconds
        self._backoff_cap = backoff_cap_seconds
        self._max_attempts = max_reconnect_attempts

        self._stream: LogChunkStream | None = None
        self._chunks: Iterator[bytes] | None = None
        self._buffer = b""
        self._pending: deque[LineEvent] = deque()
        self._eof = False

        self._connected_once = False
        self._last_timestamp: datetime | None = None
        self._resume_after: datetime | None = None
        self._closed_at: datetime | None = None
        self.reconnects = 0
        self.dropped_replays = 0

    @property
    def container(self) -> str:
        return self._container

    @property
    def is_open(self) -> bool:
        return self._chunks is not None

    # ---------------------------------------------------------------------------
    # Primitive operations
    # ---------------------------------------------------------------------------

    async def open(self) -> None:
        """Open the log stream.

        Raises:
            StreamConnectionError: target missing or runtime unreachable.
        """
        self.close()
        since: datetime | None
        if not self._connected_once:
            since = None if self._start_from == "start" else datetime.now(timezone.utc)
        else:
            since = self._last_timestamp or self._closed_at or datetime.now(timezone.utc)

        stream = await asyncio.to_thread(self._runtime.stream_logs, self._container, since)
        self._stream = stream
        self._chunks = iter(stream)
        if self._connected_once:
            self.reconnects += 1
            self._resume_after = self._last_timestamp
        self._connected_once = True
        log.info(
            "stream_opened",
            container=self._container,
            since=since.isoformat() if since else "start",
            reconnects=self.reconnects,
        )

    async def next(self) -> LineEvent | EndOfStream:
        """Suspend until the next line arrives or the stream closes.

        Raises:
            StreamConnectionError: the stream is not open or was lost.
        """
        while True:
            while self._pending:
                event = self._pending.popleft()
                if self._is_replay(event):
                    continue
                if event.timestamp is not None:
                    self._last_timestamp = event.timestamp
                return event

            if self._eof:
                self.close()
                return END_OF_STREAM

            chunks = self._chunks
            if chunks is None:
                raise StreamConnectionError(self._container, "stream is not open")

            chunk = await asyncio.to_thread(next, chunks, None)
            if chunk is None:
                if self._buffer:
                    self._pending.append(split_line(self._buffer))
                    self._buffer = b""
                self._eof = True
                continue
            self._feed(chunk)

    def close(self) -> None:
        """Close the stream handle.  Safe to call repeatedly."""
        stream, self._stream = self._stream, None
        self._chunks = None
        self._buffer = b""
        self._pending.clear()
        self._eof = False
        if stream is not None:
            self._closed_at = datetime.now(timezone.utc)
            stream.close()

    # ---------------------------------------------------------------------------
    # Endless iteration
    # ---------------------------------------------------------------------------

    async def lines(self) -> AsyncIterator[LineEvent]:
        """Yield lines forever, reconnecting with exponential backoff.

        Raises:
            StreamConnectionError: only when ``max_reconnect_attempts`` is
                positive and that many consecutive opens failed.
        """
        attempt = 0  # reconnects since a stream last delivered a line
        open_failures = 0  # consecutive failed opens
        tried = False
        try:
            while True:
                if self._chunks is None:
                    if tried:
                        delay = backoff_delay(attempt, self._backoff_base, self._backoff_cap)
                        attempt += 1
                        log.info(
                            "stream_reconnecting",
                            container=self._container,
                            attempt=attempt,
                            delay_s=delay,
                        )
                        await asyncio.sleep(delay)
                    tried = True
                    try:
                        await self.open()
                    except StreamConnectionError as exc:
                        open_failures += 1
                        log.warning(
                            "stream_open_failed",
                            container=self._container,
                            attempt=open_failures,
                            error=exc.reason,
                        )
                        if self._max_attempts and open_failures >= self._max_attempts:
                            log.error(
                                "stream_retries_exhausted",
                                container=self._container,
                                attempts=open_failures,
                            )
                            raise
                        continue
                    open_failures = 0

                try:
                    item = await self.next()
                except StreamConnectionError as exc:
                    log.warning("stream_lost", container=self._container, error=exc.reason)
                    self.close()
                    continue

                if isinstance(item, EndOfStream):
                    log.info("stream_ended", container=self._container)
                    continue
                attempt = 0
                yield item
        finally:
            self.close()

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    def _feed(self, chunk: bytes) -> None:
        self._buffer += chunk
        while b"\n" in self._buffer:
            raw, self._buffer = self._buffer.split(b"\n", 1)
            self._pending.append(split_line(raw))
        if len(self._buffer) > MAX_BUFFER_SIZE:
            log.error(
                "stream_buffer_overflow",
                container=self._container,
                size=len(self._buffer),
            )
            self._buffer = b""

    def _is_replay(self, event: LineEvent) -> bool:
        if self._resume_after is None or event.timestamp is None:
            return False
        if event.timestamp <= self._resume_after:
            self.dropped_replays += 1
            log.debug("replayed_line_dropped", container=self._container, text=event.text)
            return True
        # Lines arrive in order: once one is newer, the rest are too.
        self._resume_after = None
        return False
