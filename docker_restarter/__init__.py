"""docker-restarter — Restart containers when another container logs a pattern.

A small reactive supervisor between otherwise unrelated containers: it follows
the log stream of a watched container and, whenever a configured text appears,
restarts one or more target containers.  The first match can be skipped so
that start-up noise does not trigger an immediate restart.

Components (bottom to top):
    1. Runtime     — ContainerRuntime seam, DockerRuntime on the docker SDK
    2. Stream      — LogStreamReader: lines, backoff, reconnect without replay
    3. Engine      — TriggerEngine: substring match + skip-first policy
    4. Dispatch    — RestartDispatcher: bounded, joined fan-out with timeouts
    5. Supervisor  — one LogWatcher task per rule, signal-driven shutdown
    6. CLI         — typer app: run / check / config show
"""

__version__ = "0.1.0"

from docker_restarter.config import Settings, WatchRule
from docker_restarter.engine import TriggerEngine
from docker_restarter.stream import LogStreamReader

__all__ = [
    "__version__",
    "Settings",
    "WatchRule",
    "TriggerEngine",
    "LogStreamReader",
]
