"""docker-restarter — Exception hierarchy.

All exceptions raised by the supervisor inherit from RestarterError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    RestarterError
    ├── ConfigurationError
    ├── RuntimeClientError
    │   ├── StreamConnectionError   (also a builtin ConnectionError)
    │   └── ContainerNotFoundError
    └── RestartDispatchError

Only ConfigurationError is fatal.  Stream errors are recovered by the reader
(backoff + reconnect) and dispatch errors are logged per target.
"""

from __future__ import annotations

from typing import Any


class RestarterError(Exception):
    """Base exception for all docker-restarter errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RestarterError):
    """Watch rules or settings are missing or invalid.  Raised before watching starts."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, context={"errors": errors or []})
        self.errors = errors or []


# ---------------------------------------------------------------------------
# Container runtime
# ---------------------------------------------------------------------------


class RuntimeClientError(RestarterError):
    """Base for errors reported by the container runtime client."""


class StreamConnectionError(RuntimeClientError, ConnectionError):
    """The log stream of a container could not be opened or was lost."""

    def __init__(self, container: str, reason: str) -> None:
        super().__init__(
            f"Log stream for container '{container}' unavailable: {reason}",
            context={"container": container, "reason": reason},
        )
        self.container = container
        self.reason = reason


class ContainerNotFoundError(RuntimeClientError):
    """The runtime does not know a container with this name or id."""

    def __init__(self, container: str) -> None:
        super().__init__(
            f"Container '{container}' not found",
            context={"container": container},
        )
        self.container = container


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class RestartDispatchError(RestarterError):
    """A restart command for one target failed or timed out."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(
            f"Restart of container '{target}' failed: {reason}",
            context={"target": target, "reason": reason},
        )
        self.target = target
        self.reason = reason
