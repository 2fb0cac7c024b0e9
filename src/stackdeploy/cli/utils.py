"""
CLI utility helpers: output formatting shared by the commands.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackdeploy.core.errors import StackDeployError
from stackdeploy.deploy.config import DeployConfig, Environment, parse_environment
from stackdeploy.deploy.results import DeploymentOutcome, ServiceObservation, ServiceState

console = Console()
err_console = Console(stderr=True)

_STATE_STYLE = {
    ServiceState.HEALTHY: "green",
    ServiceState.RUNNING_NO_HEALTHCHECK: "green",
    ServiceState.STARTING: "yellow",
    ServiceState.UNHEALTHY: "red",
    ServiceState.NOT_RUNNING: "red",
    ServiceState.UNKNOWN: "dim",
}


# ── Config helpers ───────────────────────────────────────────────────────


def build_config(project_dir: Path, environment: str, **overrides: object) -> DeployConfig:
    """Build the config, exiting 2 on an invalid setting."""
    try:
        return DeployConfig.load(project_dir, environment, **overrides)
    except ValueError as exc:
        err_console.print(f"[red]✗ Invalid configuration:[/] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc


def load_config(project_dir: Path, environment: str, **overrides: object) -> tuple[Environment, DeployConfig]:
    """Parse the environment and build the config, exiting 2 on a bad selector."""
    try:
        env = parse_environment(environment)
    except StackDeployError as exc:
        err_console.print(f"[red]✗ {exc.message}[/]")
        raise typer.Exit(code=2) from exc
    return env, build_config(project_dir, env.value, **overrides)


def fail(exc: StackDeployError) -> None:
    """Print a StackDeployError and exit 1."""
    err_console.print(f"[red]✗ {exc.message}[/]")
    stderr = exc.details.get("stderr")
    if stderr:
        err_console.print(f"[dim]{stderr}[/]")
    raise typer.Exit(code=1) from exc


# ── Output helpers ───────────────────────────────────────────────────────


def print_observations(observations: list[ServiceObservation] | tuple[ServiceObservation, ...]) -> None:
    table = Table(title="Services")
    table.add_column("Service", style="cyan")
    table.add_column("Status")
    for obs in observations:
        style = _STATE_STYLE.get(obs.status, "white")
        table.add_row(obs.name, f"[{style}]{obs.status.value}[/]")
    console.print(table)


def print_outcome(outcome: DeploymentOutcome, urls: dict[str, str] | None = None) -> None:
    """Render a deployment outcome for an operator."""
    if outcome.convergence is not None and outcome.convergence.observations:
        print_observations(outcome.convergence.observations)

    if outcome.smoke_checks:
        table = Table(title="Smoke checks")
        table.add_column("Endpoint", style="cyan")
        table.add_column("URL")
        table.add_column("Result")
        table.add_column("Attempts", justify="right")
        for check in outcome.smoke_checks:
            result = "[green]ok[/]" if check.passed else f"[red]{check.error}[/]"
            table.add_row(check.name, check.url, result, str(check.attempts))
        console.print(table)

    for warning in outcome.warnings:
        console.print(f"[yellow]⚠ [{warning.stage.value}] {warning.message}[/]")

    if outcome.backup is not None:
        console.print(f"  backup: {outcome.backup.directory}")

    if outcome.succeeded:
        console.print(
            f"[bold green]✓ Deployment to {outcome.environment} completed[/] "
            f"in {outcome.duration_seconds:.1f}s (run {outcome.run_id})"
        )
        for name, url in (urls or {}).items():
            console.print(f"  {name:<14} {url}")
    else:
        stage = outcome.halted_stage.value if outcome.halted_stage else "unknown"
        err_console.print(
            f"[bold red]✗ Deployment to {outcome.environment} failed[/] "
            f"at stage [bold]{stage}[/]: {outcome.kind.value}"
        )
        if outcome.error:
            err_console.print(f"  {outcome.error}")
