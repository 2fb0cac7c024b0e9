"""
CLI: ``stackdeploy stack``: day-to-day stack maintenance.

Usage::

    stackdeploy stack up | down | restart | update
    stackdeploy stack scale backend 3
    stackdeploy stack logs [SERVICE] --tail 50
    stackdeploy stack ps
    stackdeploy stack health            # exit 1 unless every service is healthy
    stackdeploy stack validate
    stackdeploy stack backup
    stackdeploy stack restore backups/20250114_031500
    stackdeploy stack env-setup --write
    stackdeploy stack metrics
    stackdeploy stack alerts

``--env`` selects the env file and compose override (default production).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer
from rich.table import Table

from stackdeploy.cli.utils import console, err_console, fail, load_config, print_observations
from stackdeploy.core.errors import StackDeployError
from stackdeploy.deploy.backup import list_backups
from stackdeploy.deploy.config import DeployConfig
from stackdeploy.deploy.monitoring import fetch_alerts, fetch_targets
from stackdeploy.deploy.operations import StackOperations, env_setup

app = typer.Typer(no_args_is_help=True)


@dataclass
class _State:
    project_dir: Path
    environment: str


@app.callback()
def stack_main(
    ctx: typer.Context,
    environment: str = typer.Option("production", "--env", "-e", help="Environment."),
    project_dir: Path = typer.Option(
        Path("."), "--project-dir", "-C", help="Directory holding the compose files."
    ),
) -> None:
    """Maintenance commands for a running stack."""
    ctx.obj = _State(project_dir=project_dir, environment=environment)


def _ops(ctx: typer.Context) -> StackOperations:
    state: _State = ctx.obj
    env, config = load_config(state.project_dir, state.environment)
    return StackOperations.for_environment(config, env)


def _config(ctx: typer.Context) -> DeployConfig:
    state: _State = ctx.obj
    return load_config(state.project_dir, state.environment)[1]


# ── Lifecycle ────────────────────────────────────────────────────────────


@app.command("up")
def stack_up(ctx: typer.Context) -> None:
    """Start all services."""
    try:
        _ops(ctx).up()
    except StackDeployError as exc:
        fail(exc)
    console.print("[green]✓ Services started[/]")


@app.command("down")
def stack_down(ctx: typer.Context) -> None:
    """Stop all services and remove orphans."""
    try:
        _ops(ctx).down()
    except StackDeployError as exc:
        fail(exc)
    console.print("[green]✓ Services stopped[/]")


@app.command("restart")
def stack_restart(ctx: typer.Context) -> None:
    """Restart all services."""
    try:
        _ops(ctx).restart()
    except StackDeployError as exc:
        fail(exc)
    console.print("[green]✓ Services restarted[/]")


@app.command("update")
def stack_update(ctx: typer.Context) -> None:
    """Pull images and recreate every container."""
    try:
        failed = _ops(ctx).update()
    except StackDeployError as exc:
        fail(exc)
    for service in failed:
        console.print(f"[yellow]⚠ pull failed for {service}[/]")
    console.print("[green]✓ Services updated[/]")


@app.command("scale")
def stack_scale(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service to scale."),
    replicas: int = typer.Argument(..., min=0, help="Number of replicas."),
) -> None:
    """Scale SERVICE to REPLICAS containers."""
    try:
        _ops(ctx).scale(service, replicas)
    except StackDeployError as exc:
        fail(exc)
    console.print(f"[green]✓ {service} scaled to {replicas}[/]")


# ── Inspection ───────────────────────────────────────────────────────────


@app.command("logs")
def stack_logs(
    ctx: typer.Context,
    service: str | None = typer.Argument(None, help="Service name (all when omitted)."),
    tail: int = typer.Option(100, "--tail", "-n", help="Number of lines."),
) -> None:
    """Show recent logs."""
    try:
        output = _ops(ctx).logs(service, tail)
    except StackDeployError as exc:
        fail(exc)
    typer.echo(output, nl=False)


@app.command("ps")
def stack_ps(ctx: typer.Context) -> None:
    """List services and their state."""
    try:
        observations = _ops(ctx).status()
    except StackDeployError as exc:
        fail(exc)
    if not observations:
        console.print("[dim]No services running.[/]")
        return
    print_observations(observations)


@app.command("health")
def stack_health(ctx: typer.Context) -> None:
    """Check every service once; exit 1 unless all are healthy or running."""
    try:
        result = _ops(ctx).health()
    except StackDeployError as exc:
        fail(exc)
    print_observations(result.observations)
    if not result.converged:
        err_console.print(f"[red]✗ Not healthy: {', '.join(result.pending()) or 'no services'}[/]")
        raise typer.Exit(code=1)
    console.print("[green]✓ All services healthy[/]")


@app.command("validate")
def stack_validate(ctx: typer.Context) -> None:
    """Validate the compose configuration and required secrets."""
    try:
        missing = _ops(ctx).validate()
    except StackDeployError as exc:
        fail(exc)
    for key in missing:
        console.print(f"[yellow]⚠ {key} is not set[/]")
    console.print("[green]✓ Configuration is valid[/]")


# ── Backup ───────────────────────────────────────────────────────────────


@app.command("backup")
def stack_backup(ctx: typer.Context) -> None:
    """Back up config files and data volumes."""
    try:
        report = _ops(ctx).backup()
    except StackDeployError as exc:
        fail(exc)
    console.print(f"[bold]Backup:[/] {report.directory}")
    console.print(f"  files:   {', '.join(report.config_files) or '-'}")
    console.print(f"  volumes: {', '.join(report.volumes) or '-'}")
    for item in report.failed:
        console.print(f"[yellow]⚠ {item} failed[/]")


@app.command("restore")
def stack_restore(
    ctx: typer.Context,
    directory: Path | None = typer.Argument(None, help="Backup directory (latest when omitted)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Restore data volumes from a backup directory."""
    if directory is None:
        backups = list_backups(_config(ctx))
        if not backups:
            err_console.print("[red]✗ No backups found[/]")
            raise typer.Exit(code=1)
        directory = backups[0]
    if not yes and not typer.confirm(f"Restore volumes from {directory}? Services will be stopped.", default=False):
        console.print("Restore cancelled.")
        raise typer.Exit(code=1)
    try:
        restored = _ops(ctx).restore(directory)
    except StackDeployError as exc:
        fail(exc)
    console.print(f"[green]✓ Restored {len(restored)} volume(s) from {directory}[/]")


@app.command("env-setup")
def stack_env_setup(
    ctx: typer.Context,
    write: bool = typer.Option(False, "--write", help="Fill blank keys in .env with the generated values."),
) -> None:
    """Create .env from .env.example and generate secrets."""
    state: _State = ctx.obj
    result = env_setup(state.project_dir, write=write)
    if result.created:
        console.print(f"[green]✓ Created {result.path}[/]")
    if write:
        console.print(f"Wrote: {', '.join(result.written) or 'nothing (all keys already set)'}")
    else:
        console.print("Generated secrets (add them to .env):")
        for key, value in result.secrets.items():
            typer.echo(f"{key}={value}")


# ── Monitoring ───────────────────────────────────────────────────────────


@app.command("metrics")
def stack_metrics(ctx: typer.Context) -> None:
    """List Prometheus scrape targets."""
    try:
        targets = fetch_targets(_config(ctx))
    except StackDeployError as exc:
        fail(exc)
    table = Table(title="Scrape targets")
    table.add_column("Job", style="cyan")
    table.add_column("Instance")
    table.add_column("Health")
    table.add_column("Last scrape")
    for t in targets:
        style = "green" if t.health == "up" else "red"
        table.add_row(t.job, t.instance, f"[{style}]{t.health}[/]", t.last_scrape)
    console.print(table)


@app.command("alerts")
def stack_alerts(ctx: typer.Context) -> None:
    """List active Alertmanager alerts."""
    try:
        alerts = fetch_alerts(_config(ctx))
    except StackDeployError as exc:
        fail(exc)
    if not alerts:
        console.print("[green]No active alerts.[/]")
        return
    table = Table(title="Active alerts")
    table.add_column("Alert", style="cyan")
    table.add_column("State")
    table.add_column("Severity")
    table.add_column("Since")
    table.add_column("Summary")
    for a in alerts:
        table.add_row(
            a.name,
            a.state,
            a.labels.get("severity", ""),
            a.starts_at,
            a.annotations.get("summary", ""),
        )
    console.print(table)
