"""
CLI: ``stackdeploy deploy [ENVIRONMENT]``.

Runs the full deployment pipeline and exits with the outcome's code:
0 on success, 2 for an unknown environment, 1 for any other failure
(including a declined production confirmation).

Usage::

    stackdeploy deploy                     # production, asks for confirmation
    stackdeploy deploy staging
    stackdeploy deploy production --yes    # no prompt (CI)
    stackdeploy deploy staging --json      # outcome as JSON on stdout
"""

from __future__ import annotations

from pathlib import Path

import typer

from stackdeploy.cli.utils import build_config, console, print_outcome
from stackdeploy.deploy.orchestrator import DeploymentOrchestrator
from stackdeploy.deploy.stack import access_urls


def _confirm(prompt: str) -> bool:
    # A closed or exhausted stdin counts as "no"
    try:
        return typer.confirm(prompt, default=False)
    except (typer.Abort, EOFError):
        return False


def deploy_command(
    environment: str = typer.Argument(
        "production", help="Target environment: production, staging or development."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the production confirmation."),
    project_dir: Path = typer.Option(
        Path("."), "--project-dir", "-C", help="Directory holding the compose files."
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Health-convergence timeout in seconds."
    ),
    interval: float | None = typer.Option(
        None, "--interval", help="Seconds between health polls."
    ),
    output_dir: Path | None = typer.Option(
        None, "--output", "-o", help="Write {run_id}/summary.json under this directory."
    ),
    json_out: bool = typer.Option(False, "--json", help="Print the outcome as JSON."),
) -> None:
    """Deploy the monitoring stack to ENVIRONMENT."""
    overrides: dict[str, object] = {}
    if yes:
        overrides["assume_yes"] = True
    if timeout is not None:
        overrides["convergence_timeout_seconds"] = timeout
    if interval is not None:
        overrides["poll_interval_seconds"] = interval
    if output_dir is not None:
        overrides["output_dir"] = output_dir

    # An unknown environment is reported by the orchestrator (exit 2)
    config = build_config(project_dir, environment, **overrides)

    if not json_out:
        console.print(f"[bold]stackdeploy[/] deploy {environment} [dim](run {config.run_id})[/]")

    outcome = DeploymentOrchestrator(confirm=_confirm).deploy(environment, config)

    if json_out:
        typer.echo(outcome.model_dump_json(indent=2))
    else:
        print_outcome(outcome, access_urls(config) if outcome.succeeded else None)

    if outcome.exit_code:
        raise typer.Exit(code=outcome.exit_code)
