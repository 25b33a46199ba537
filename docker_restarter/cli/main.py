"""docker-restarter CLI — Entry point.

Usage:
    docker-restarter run --watch logger --restart app,worker --pattern ready --skip-first true
    docker-restarter check --config rules.yaml
    docker-restarter config show
"""

from __future__ import annotations

import typer

from docker_restarter.cli.commands import config, watch

app = typer.Typer(
    name="docker-restarter",
    help="Monitor container logs and restart other containers when a pattern appears.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

app.command("run")(watch.run)
app.command("check")(watch.check)
app.add_typer(config.app, name="config")


@app.callback()
def main_callback() -> None:
    pass


if __name__ == "__main__":
    app()
