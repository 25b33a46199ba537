"""Container runtime client.

The core only ever needs two things from the runtime:

- ``stream_logs(container, since)`` — a blocking iterator of raw log chunks
  (stdout + stderr, timestamp-prefixed) that ends when the runtime closes it
- ``restart(container, timeout)`` — restart one container and return when the
  runtime acknowledges it

Both calls are blocking.  Callers run them through ``asyncio.to_thread``.

DockerRuntime implements the contract on the ``docker`` SDK talking to the
local control socket.  The client is created lazily so that constructing the
runtime never touches the daemon; connection problems surface on first use as
``StreamConnectionError`` where they can be retried.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterator

import docker
import requests
from docker.errors import DockerException, NotFound

from docker_restarter.exceptions import (
    ContainerNotFoundError,
    RuntimeClientError,
    StreamConnectionError,
)
from docker_restarter.logging import get_logger

log = get_logger(__name__)


class LogChunkStream(ABC):
    """Blocking iterator over raw log chunks that can be closed from another thread."""

    @abstractmethod
    def __iter__(self) -> Iterator[bytes]: ...

    @abstractmethod
    def close(self) -> None: ...


class ContainerRuntime(ABC):
    """The two runtime operations the trigger engine depends on."""

    @abstractmethod
    def stream_logs(self, container: str, since: datetime | None) -> LogChunkStream:
        """Open a follow-mode log stream.

        ``since=None`` streams from the start of the container log.

        Raises:
            StreamConnectionError: no such container, or the runtime is unreachable.
        """

    @abstractmethod
    def restart(self, container: str, timeout: int) -> None:
        """Restart *container*, waiting at most *timeout* seconds for it to stop.

        Raises:
            ContainerNotFoundError: no such container.
            RuntimeClientError:     the runtime rejected the command.
        """

    def close(self) -> None:
        """Release client resources.  Default: nothing to release."""


# ---------------------------------------------------------------------------
# Docker
# ---------------------------------------------------------------------------


class _DockerLogStream(LogChunkStream):
    """Wraps the SDK's ``CancellableStream``."""

    def __init__(self, container: str, raw: Any) -> None:
        self._container = container
        self._raw = raw

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._raw:
                yield chunk
        except (requests.exceptions.RequestException, DockerException) as exc:
            raise StreamConnectionError(self._container, str(exc)) from exc
        except (OSError, AttributeError, ValueError) as exc:
            # Raised by urllib3 when close() tears the socket down mid-read.
            raise StreamConnectionError(self._container, f"stream closed: {exc}") from exc

    def close(self) -> None:
        try:
            self._raw.close()
        except Exception as exc:
            log.debug("log_stream_close_error", container=self._container, error=str(exc))


class DockerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the Docker Engine API."""

    def __init__(self, base_url: str | None = None) -> None:
        self._base_url = base_url
        self._client: docker.DockerClient | None = None
        self._lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        """The SDK client, connected on first access.

        Raises:
            StreamConnectionError: the daemon cannot be reached.
        """
        with self._lock:
            if self._client is None:
                try:
                    if self._base_url:
                        self._client = docker.DockerClient(base_url=self._base_url)
                    else:
                        self._client = docker.from_env()
                except DockerException as exc:
                    raise StreamConnectionError(self._base_url or "docker", str(exc)) from exc
                log.info("docker_connected", base_url=self._base_url or "env")
            return self._client

    def stream_logs(self, container: str, since: datetime | None) -> LogChunkStream:
        kwargs: dict[str, Any] = {
            "stream": True,
            "follow": True,
            "stdout": True,
            "stderr": True,
            "timestamps": True,
        }
        if since is not None:
            kwargs["since"] = _as_utc(since).timestamp()
        try:
            raw = self.client.containers.get(container).logs(**kwargs)
        except NotFound as exc:
            raise StreamConnectionError(container, "container not found") from exc
        except (requests.exceptions.RequestException, DockerException) as exc:
            raise StreamConnectionError(container, str(exc)) from exc
        return _DockerLogStream(container, raw)

    def restart(self, container: str, timeout: int) -> None:
        try:
            self.client.containers.get(container).restart(timeout=timeout)
        except NotFound as exc:
            raise ContainerNotFoundError(container) from exc
        except StreamConnectionError as exc:
            raise RuntimeClientError(exc.message, context=exc.context) from exc
        except (requests.exceptions.RequestException, DockerException) as exc:
            raise RuntimeClientError(
                f"Docker refused restart of '{container}': {exc}",
                context={"container": container},
            ) from exc

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
