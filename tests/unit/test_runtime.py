"""Unit tests — runtime.py (DockerRuntime over a mocked docker SDK)."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests
from docker.errors import APIError, DockerException, NotFound

from docker_restarter.exceptions import (
    ContainerNotFoundError,
    RuntimeClientError,
    StreamConnectionError,
)
from docker_restarter.runtime import DockerRuntime


def _runtime_with(client: MagicMock) -> DockerRuntime:
    rt = DockerRuntime()
    rt._client = client
    return rt


@pytest.mark.unit
class TestDockerRuntimeClient:
    def test_client_created_lazily_from_env(self) -> None:
        with patch("docker_restarter.runtime.docker.from_env") as from_env:
            rt = DockerRuntime()
            from_env.assert_not_called()
            client = rt.client
            assert client is from_env.return_value
            assert rt.client is client
            from_env.assert_called_once()

    def test_client_uses_base_url(self) -> None:
        with patch("docker_restarter.runtime.docker.DockerClient") as ctor:
            DockerRuntime(base_url="unix:///tmp/docker.sock").client
        ctor.assert_called_once_with(base_url="unix:///tmp/docker.sock")

    def test_unreachable_daemon_is_connection_error(self) -> None:
        with patch(
            "docker_restarter.runtime.docker.from_env",
            side_effect=DockerException("Error while fetching server API version"),
        ):
            with pytest.raises(StreamConnectionError):
                DockerRuntime().client

    def test_close_releases_client(self) -> None:
        client = MagicMock()
        rt = _runtime_with(client)
        rt.close()
        client.close.assert_called_once()
        assert rt._client is None


@pytest.mark.unit
class TestDockerRuntimeLogs:
    def test_stream_logs_options(self) -> None:
        client = MagicMock()
        container = client.containers.get.return_value
        container.logs.return_value = iter([b"a\n"])
        since = datetime(2024, 5, 1, tzinfo=timezone.utc)

        stream = _runtime_with(client).stream_logs("logger", since)

        client.containers.get.assert_called_once_with("logger")
        kwargs = container.logs.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["follow"] is True
        assert kwargs["stdout"] is True and kwargs["stderr"] is True
        assert kwargs["timestamps"] is True
        assert kwargs["since"] == since.timestamp()
        assert list(stream) == [b"a\n"]

    def test_stream_from_start_has_no_since(self) -> None:
        client = MagicMock()
        _runtime_with(client).stream_logs("logger", None)
        kwargs = client.containers.get.return_value.logs.call_args.kwargs
        assert "since" not in kwargs

    def test_missing_container_is_connection_error(self) -> None:
        client = MagicMock()
        client.containers.get.side_effect = NotFound("no such container")
        with pytest.raises(StreamConnectionError, match="not found"):
            _runtime_with(client).stream_logs("ghost", None)

    def test_socket_error_is_connection_error(self) -> None:
        client = MagicMock()
        client.containers.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(ConnectionError):
            _runtime_with(client).stream_logs("logger", None)

    def test_read_error_mid_stream(self) -> None:
        def _broken():
            yield b"a\n"
            raise requests.exceptions.ChunkedEncodingError("reset")

        client = MagicMock()
        client.containers.get.return_value.logs.return_value = _broken()
        stream = _runtime_with(client).stream_logs("logger", None)
        it = iter(stream)
        assert next(it) == b"a\n"
        with pytest.raises(StreamConnectionError):
            next(it)

    def test_close_closes_sdk_stream(self) -> None:
        client = MagicMock()
        raw = client.containers.get.return_value.logs.return_value
        _runtime_with(client).stream_logs("logger", None).close()
        raw.close.assert_called_once()


@pytest.mark.unit
class TestDockerRuntimeRestart:
    def test_restart_with_timeout(self) -> None:
        client = MagicMock()
        _runtime_with(client).restart("app", timeout=7)
        client.containers.get.assert_called_once_with("app")
        client.containers.get.return_value.restart.assert_called_once_with(timeout=7)

    def test_restart_not_found(self) -> None:
        client = MagicMock()
        client.containers.get.side_effect = NotFound("gone")
        with pytest.raises(ContainerNotFoundError):
            _runtime_with(client).restart("app", timeout=7)

    def test_restart_api_error(self) -> None:
        client = MagicMock()
        client.containers.get.return_value.restart.side_effect = APIError("500 server error")
        with pytest.raises(RuntimeClientError, match="refused restart"):
            _runtime_with(client).restart("app", timeout=7)

    def test_restart_with_unreachable_daemon(self) -> None:
        with patch(
            "docker_restarter.runtime.docker.from_env",
            side_effect=DockerException("connection refused"),
        ):
            with pytest.raises(RuntimeClientError):
                DockerRuntime().restart("app", timeout=7)
