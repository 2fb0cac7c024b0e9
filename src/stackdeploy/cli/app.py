"""
Root Typer application for the ``stackdeploy`` CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from stackdeploy.core.logging import configure_logging

app = Typer(
    name="stackdeploy",
    help="stackdeploy: deploy and operate the docker monitoring stack.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from stackdeploy import __version__

        typer.echo(f"stackdeploy {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option(
        "INFO", "--log-level", envvar="STACKDEPLOY_LOG_LEVEL", help="DEBUG, INFO, WARNING or ERROR."
    ),
    log_json: bool | None = typer.Option(
        None, "--log-json/--log-console", help="Force JSON or console logs (auto by default)."
    ),
) -> None:
    """stackdeploy CLI: deploy, inspect, back up and restore the stack."""
    configure_logging(level=log_level, json_format=log_json)


# ── Commands ─────────────────────────────────────────────────────────────

from stackdeploy.cli.deploy import deploy_command  # noqa: E402
from stackdeploy.cli.stack import app as stack_app  # noqa: E402

app.command("deploy")(deploy_command)
app.add_typer(stack_app, name="stack", help="Stack maintenance: up, down, logs, backup, ...")


@app.command("help")
def help_command(ctx: typer.Context) -> None:
    """Show usage for every command."""
    root = ctx.parent or ctx
    typer.echo(root.get_help())
    typer.echo("")
    typer.echo("Environments: production (default, asks for confirmation), staging, development")
    typer.echo("Exit codes:   0 success, 1 deployment failed or cancelled, 2 unknown environment")
