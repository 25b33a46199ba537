"""CLI — Watch commands (``run`` and ``check``)."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from docker_restarter.config import Settings, build_rules
from docker_restarter.exceptions import ConfigurationError

console = Console()

WatchOpt = Annotated[
    list[str] | None,
    typer.Option("--watch", "-w", metavar="CONTAINER", help="Container whose logs are watched (repeatable)."),
]
RestartOpt = Annotated[
    list[str] | None,
    typer.Option("--restart", "-r", metavar="CONTAINERS", help="Comma-separated containers to restart (repeatable)."),
]
PatternOpt = Annotated[
    list[str] | None,
    typer.Option("--pattern", "-p", metavar="PATTERN", help="Exact text to look for in each log line (repeatable)."),
]
SkipFirstOpt = Annotated[
    list[str] | None,
    typer.Option("--skip-first", "-s", metavar="BOOLEAN", help="Ignore the first match of the rule (repeatable)."),
]
ConfigOpt = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
]
DockerUrlOpt = Annotated[
    str | None, typer.Option("--docker-url", help="Docker daemon URL. Defaults to DOCKER_HOST / local socket.")
]
StartFromOpt = Annotated[
    str | None, typer.Option("--start-from", help="'now' (new lines only) or 'start' (whole log).")
]
LogLevelOpt = Annotated[str | None, typer.Option("--log-level", help="Log level.")]
LogFormatOpt = Annotated[str | None, typer.Option("--log-format", help="'console' or 'json'.")]


def load_settings(
    *,
    watch: list[str] | None,
    restart: list[str] | None,
    pattern: list[str] | None,
    skip_first: list[str] | None,
    config: Path | None = None,
    docker_url: str | None = None,
    start_from: str | None = None,
    log_level: str | None = None,
    log_format: str | None = None,
) -> Settings:
    """Merge file / environment settings with command-line options.

    Rules given on the command line replace rules from the config file.
    """
    overrides: dict[str, Any] = {}
    if any((watch, restart, pattern, skip_first)):
        overrides["rules"] = build_rules(watch or [], restart or [], pattern or [], skip_first or [])
    if docker_url:
        overrides["docker"] = {"base_url": docker_url}
    if start_from:
        overrides["stream"] = {"start_from": start_from}
    logging_overrides = {
        k: v.lower() for k, v in {"level": log_level, "format": log_format}.items() if v
    }
    if logging_overrides:
        overrides["logging"] = logging_overrides

    settings = Settings.load(config_file=config, **overrides)
    settings.require_rules()
    return settings


def fail(exc: ConfigurationError) -> None:
    """Print a configuration error and exit with code 2."""
    console.print(f"[bold red]Configuration error:[/bold red] {exc.message}")
    for error in exc.errors:
        console.print(f"  [red]- {error}[/red]")
    raise typer.Exit(2)


def run(
    watch: WatchOpt = None,
    restart: RestartOpt = None,
    pattern: PatternOpt = None,
    skip_first: SkipFirstOpt = None,
    config: ConfigOpt = None,
    docker_url: DockerUrlOpt = None,
    start_from: StartFromOpt = None,
    log_level: LogLevelOpt = None,
    log_format: LogFormatOpt = None,
) -> None:
    """Watch container logs and restart containers when a pattern appears."""
    from docker_restarter.logging import configure_logging
    from docker_restarter.supervisor import Supervisor

    try:
        settings = load_settings(
            watch=watch,
            restart=restart,
            pattern=pattern,
            skip_first=skip_first,
            config=config,
            docker_url=docker_url,
            start_from=start_from,
            log_level=log_level,
            log_format=log_format,
        )
    except ConfigurationError as exc:
        fail(exc)
        return

    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

    supervisor = Supervisor.from_settings(settings)
    console.print(
        f"[bold green]Watching {len(settings.rules)} container(s). Press Ctrl+C to stop.[/bold green]"
    )
    try:
        asyncio.run(supervisor.run())
    except KeyboardInterrupt:
        pass


def check(
    watch: WatchOpt = None,
    restart: RestartOpt = None,
    pattern: PatternOpt = None,
    skip_first: SkipFirstOpt = None,
    config: ConfigOpt = None,
) -> None:
    """Validate the configuration and print the resolved rules."""
    try:
        settings = load_settings(
            watch=watch,
            restart=restart,
            pattern=pattern,
            skip_first=skip_first,
            config=config,
        )
    except ConfigurationError as exc:
        fail(exc)
        return

    table = Table(title="Watch rules")
    table.add_column("#", style="dim")
    table.add_column("Watch", style="cyan")
    table.add_column("Restart", style="green")
    table.add_column("Pattern", style="yellow")
    table.add_column("Skip first")
    for index, rule in enumerate(settings.rules):
        table.add_row(
            str(index),
            rule.watch,
            ", ".join(rule.restart),
            repr(rule.pattern),
            "yes" if rule.skip_first else "no",
        )
    console.print(table)
    console.print(
        f"Docker: {settings.docker.base_url or 'from environment'}  "
        f"start from: {settings.stream.start_from}  "
        f"restart timeout: {settings.dispatch.timeout_seconds}s"
    )
