"""Result models for stack deployments.

Pydantic v2 models capturing what the runtime was observed doing and what
a deployment run concluded. Two layers:

* the convergence layer (``ServiceDescriptor`` -> ``ServiceObservation``
  -> ``ConvergenceResult``), produced by the poll loop;
* the run layer (``DeploymentOutcome`` with its warnings, backup report
  and smoke results), produced once per ``deploy()`` call on every path.

Key Concepts:
    ServiceState: Enum of the six classifications a service can receive
        on one poll tick.
    ServiceObservation: Immutable snapshot of one service on one tick.
    ConvergenceResult: Observations at loop exit plus verdict, elapsed
        time and number of passes. ``converged`` holds iff every
        observation is HEALTHY or RUNNING_NO_HEALTHCHECK.
    DeploymentOutcome: Final verdict. ``mark_complete()`` finalises
        timestamps and duration; ``exit_code`` maps the verdict onto the
        CLI exit status.

Architecture Decisions:
    - Observations and convergence results are frozen: a tick produces a
      fresh set, nothing is updated in place.
    - DeploymentOutcome stays mutable while stages run (warnings are
      appended) and is serialised with ``model_dump_json(indent=2)``.

Related Modules:
    - :mod:`stackdeploy.deploy.convergence` produces ConvergenceResult
    - :mod:`stackdeploy.deploy.orchestrator` produces DeploymentOutcome
    - :mod:`stackdeploy.deploy.report` renders and persists it

Tags:
    results, models, pydantic, convergence, deployment, outcome
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from stackdeploy.core.errors import OutcomeKind

# ---------------------------------------------------------------------------
# Convergence layer
# ---------------------------------------------------------------------------


class ServiceState(str, Enum):
    """Classification of a service on one poll tick."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    RUNNING_NO_HEALTHCHECK = "running_no_healthcheck"
    NOT_RUNNING = "not_running"


CONVERGED_STATES = frozenset({ServiceState.HEALTHY, ServiceState.RUNNING_NO_HEALTHCHECK})


class ServiceDescriptor(BaseModel):
    """A service as enumerated from the runtime on one tick."""

    model_config = ConfigDict(frozen=True)

    name: str
    has_healthcheck: bool | None = None
    """True/False when known from the listing, None until inspected."""


class ServiceObservation(BaseModel):
    """Immutable snapshot of one service's classified state."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: ServiceState
    observed_at: float

    @property
    def converged(self) -> bool:
        return self.status in CONVERGED_STATES


class Verdict(str, Enum):
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"


class ConvergenceResult(BaseModel):
    """Outcome of the health-convergence wait."""

    model_config = ConfigDict(frozen=True)

    observations: tuple[ServiceObservation, ...] = ()
    verdict: Verdict
    elapsed_seconds: float
    passes: int

    @property
    def converged(self) -> bool:
        return self.verdict is Verdict.CONVERGED

    def pending(self) -> list[str]:
        """Names of services not yet in a converged state."""
        return [o.name for o in self.observations if not o.converged]

    def by_status(self) -> dict[ServiceState, list[str]]:
        grouped: dict[ServiceState, list[str]] = {}
        for o in self.observations:
            grouped.setdefault(o.status, []).append(o.name)
        return grouped


# ---------------------------------------------------------------------------
# Run layer
# ---------------------------------------------------------------------------


class Stage(str, Enum):
    """Deployment stages, in execution order."""

    ENVIRONMENT = "environment"
    PREREQUISITES = "prerequisites"
    CONFIG = "config"
    CONFIRMATION = "confirmation"
    BACKUP = "backup"
    IMAGES = "images"
    STOP = "stop"
    START = "start"
    CONVERGENCE = "convergence"
    SMOKE = "smoke"
    SUMMARY = "summary"


class DeploymentWarning(BaseModel):
    """A non-fatal issue recorded during a stage."""

    stage: Stage
    message: str


class BackupReport(BaseModel):
    """What the backup stage managed to save."""

    directory: str
    config_files: list[str] = Field(default_factory=list)
    volumes: list[str] = Field(default_factory=list)
    skipped_volumes: list[str] = Field(default_factory=list)
    """Volumes that do not exist and were not archived."""

    failed: list[str] = Field(default_factory=list)
    """Files or volumes whose copy/archive failed."""


class SmokeCheckResult(BaseModel):
    """Result of probing one HTTP endpoint."""

    name: str
    url: str
    primary: bool = False
    passed: bool = False
    attempts: int = 0
    status_code: int | None = None
    error: str | None = None


class DeploymentOutcome(BaseModel):
    """Final verdict of one ``deploy()`` call."""

    run_id: str
    environment: str
    kind: OutcomeKind = OutcomeKind.SUCCESS
    halted_stage: Stage | None = None
    error: str | None = None
    warnings: list[DeploymentWarning] = Field(default_factory=list)
    backup: BackupReport | None = None
    convergence: ConvergenceResult | None = None
    smoke_checks: list[SmokeCheckResult] = Field(default_factory=list)
    compose_files: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.kind is OutcomeKind.SUCCESS:
            return 0
        if self.kind is OutcomeKind.INVALID_ENVIRONMENT:
            return 2
        return 1

    def add_warning(self, stage: Stage, message: str) -> None:
        self.warnings.append(DeploymentWarning(stage=stage, message=message))

    def halt(self, kind: OutcomeKind, stage: Stage, error: str) -> None:
        """Record the fatal failure that stopped the pipeline."""
        self.kind = kind
        self.halted_stage = stage
        self.error = error

    def mark_complete(self) -> None:
        """Finalise timestamps and duration."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()


__all__ = [
    "OutcomeKind",
    "ServiceState",
    "CONVERGED_STATES",
    "ServiceDescriptor",
    "ServiceObservation",
    "Verdict",
    "ConvergenceResult",
    "Stage",
    "DeploymentWarning",
    "BackupReport",
    "SmokeCheckResult",
    "DeploymentOutcome",
]
