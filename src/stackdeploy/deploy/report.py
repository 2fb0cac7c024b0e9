"""Deployment summary reporting.

Turns a :class:`DeploymentOutcome` into the artefacts an operator or CI
job consumes:

* ``summary_lines()``: plain-text lines (verdict, halting stage, warnings,
  service states, smoke checks) used by the log and the CLI;
* ``write_summary()``: ``{output_dir}/{run_id}/summary.json``, the
  outcome serialised with ``model_dump_json(indent=2)``.

Output Structure::

    {output_dir}/{run_id}/
    └── summary.json

Tags:
    report, summary, json, artifacts
"""

from __future__ import annotations

from pathlib import Path

from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.results import DeploymentOutcome

logger = get_logger(__name__)


def summary_lines(outcome: DeploymentOutcome) -> list[str]:
    """Human-readable summary of a deployment run."""
    if outcome.succeeded:
        lines = [f"Deployment to {outcome.environment} succeeded in {outcome.duration_seconds:.1f}s"]
    else:
        stage = outcome.halted_stage.value if outcome.halted_stage else "unknown"
        lines = [
            f"Deployment to {outcome.environment} failed: {outcome.kind.value} (stage: {stage})",
        ]
        if outcome.error:
            lines.append(f"  {outcome.error}")

    if outcome.convergence is not None:
        for status, names in outcome.convergence.by_status().items():
            lines.append(f"  {status.value}: {', '.join(names)}")

    for check in outcome.smoke_checks:
        state = "ok" if check.passed else f"failed ({check.error})"
        lines.append(f"  smoke {check.name}: {state}")

    if outcome.backup is not None:
        lines.append(f"  backup: {outcome.backup.directory}")

    for warning in outcome.warnings:
        lines.append(f"  warning [{warning.stage.value}]: {warning.message}")
    return lines


def write_summary(outcome: DeploymentOutcome, output_dir: Path) -> Path:
    """Write machine-readable summary JSON."""
    run_dir = output_dir / outcome.run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / "summary.json"
    path.write_text(outcome.model_dump_json(indent=2), encoding="utf-8")
    logger.info("summary.written", path=str(path))
    return path


__all__ = ["summary_lines", "write_summary"]
