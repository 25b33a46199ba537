"""CLI — Configuration inspection commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.syntax import Syntax

from docker_restarter.config import Settings
from docker_restarter.exceptions import ConfigurationError

app = typer.Typer(help="Inspect the effective configuration.")
console = Console()


@app.command("show")
def show(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    output: str | None = typer.Option(None, "--output", "-o", help="Output file path."),
) -> None:
    """Dump the merged settings (defaults + files + environment) as JSON."""
    try:
        settings = Settings.load(config_file=config)
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc.message}")
        for error in exc.errors:
            console.print(f"  [red]- {error}[/red]")
        raise typer.Exit(2)

    json_str = json.dumps(settings.model_dump(mode="json"), indent=2)

    if output:
        Path(output).write_text(json_str)
        console.print(f"[green]Settings written to {output}[/green]")
    else:
        console.print(Syntax(json_str, "json"))
