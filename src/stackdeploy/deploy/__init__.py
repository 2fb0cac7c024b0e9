"""Deployment pipeline for the docker monitoring stack.

Sequences ``docker compose`` through a fixed set of stages: prerequisite
checks, config validation, production confirmation, best-effort backup,
image pull and build, stop, start, a bounded health-convergence wait and
HTTP smoke checks. Every run ends in a :class:`DeploymentOutcome`.

Key Concepts:
    DeployConfig: Frozen pydantic settings, built once at the CLI boundary.
    ContainerRuntime / ComposeRuntime: Protocol and subprocess adapter for
        the docker and compose CLIs.
    wait_for_convergence: The poll loop, on an injected clock.
    DeploymentOrchestrator / deploy: The stage pipeline.
    StackOperations: up/down/restart/update/scale/logs/health/backup/restore.

Modules:
    config.py        DeployConfig, Environment, compose layers
    stack.py         Service registry and smoke endpoints
    compose.py       ContainerRuntime protocol, ComposeRuntime
    convergence.py   classify(), wait_for_convergence()
    smoke.py         HTTP probes with bounded retry
    backup.py        Config-file copies and volume archives
    monitoring.py    Prometheus targets and Alertmanager alerts
    results.py       Observation, convergence and outcome models
    report.py        Summary lines and summary.json
    orchestrator.py  DeploymentOrchestrator, deploy()
    operations.py    StackOperations, env_setup()

Tags:
    deploy, compose, docker, health, orchestration
"""

from stackdeploy.deploy.compose import ComposeRuntime, ContainerRuntime
from stackdeploy.deploy.config import DeployConfig, Environment, parse_environment
from stackdeploy.deploy.convergence import classify, wait_for_convergence
from stackdeploy.deploy.operations import StackOperations, env_setup
from stackdeploy.deploy.orchestrator import DeploymentOrchestrator, deploy
from stackdeploy.deploy.results import (
    ConvergenceResult,
    DeploymentOutcome,
    OutcomeKind,
    ServiceDescriptor,
    ServiceObservation,
    ServiceState,
    Stage,
    Verdict,
)

__all__ = [
    "ComposeRuntime",
    "ContainerRuntime",
    "DeployConfig",
    "Environment",
    "parse_environment",
    "classify",
    "wait_for_convergence",
    "StackOperations",
    "env_setup",
    "DeploymentOrchestrator",
    "deploy",
    "ConvergenceResult",
    "DeploymentOutcome",
    "OutcomeKind",
    "ServiceDescriptor",
    "ServiceObservation",
    "ServiceState",
    "Stage",
    "Verdict",
]
