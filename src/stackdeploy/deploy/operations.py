"""Stack maintenance operations.

Library counterparts of the day-to-day commands: bring the stack up or
down, restart, update images, scale a service, inspect logs and status,
validate configuration, back up and restore volumes, and prepare the env
file. The CLI in :mod:`stackdeploy.cli.stack` is a thin layer over these.

All operations share the runtime and config of a deployment. Runtime
failures propagate as :class:`~stackdeploy.core.errors.StackDeployError`.

Tags:
    operations, maintenance, compose, stack
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from stackdeploy.core.envfile import ensure_env_file, generate_secrets, write_env_values
from stackdeploy.core.errors import StackDeployError
from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.backup import BackupManager
from stackdeploy.deploy.compose import ComposeRuntime, ContainerRuntime
from stackdeploy.deploy.config import (
    ComposeLayer,
    DeployConfig,
    Environment,
    resolve_compose_layers,
)
from stackdeploy.deploy.convergence import observe
from stackdeploy.deploy.results import (
    BackupReport,
    ConvergenceResult,
    ServiceObservation,
    Verdict,
)

logger = get_logger(__name__)


class StackOperations:
    """Maintenance operations over one compose project.

    Example::

        ops = StackOperations.for_environment(config, Environment.STAGING)
        ops.scale("backend", 3)
        print(ops.health().converged)
    """

    def __init__(
        self,
        config: DeployConfig,
        runtime: ContainerRuntime,
        layers: list[ComposeLayer],
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.layers = layers

    @classmethod
    def for_environment(cls, config: DeployConfig, environment: Environment) -> StackOperations:
        layers = resolve_compose_layers(config, environment)
        return cls(config, ComposeRuntime(config, layers), layers)

    @property
    def files(self) -> list[Path]:
        return [layer.path for layer in self.layers]

    # Lifecycle

    def up(self) -> None:
        self.runtime.start(self.files)
        logger.info("stack.up", files=[str(f) for f in self.files])

    def down(self) -> None:
        self.runtime.stop_all()
        logger.info("stack.down")

    def restart(self) -> None:
        self.runtime.restart()
        logger.info("stack.restarted")

    def update(self) -> list[str]:
        """Pull every declared image, then recreate all containers.

        Returns services whose pull failed.
        """
        failed: list[str] = []
        for service in self.runtime.declared_services():
            try:
                self.runtime.pull(service)
            except StackDeployError as exc:
                logger.warning("stack.pull_failed", service=service, error=str(exc))
                failed.append(service)
        self.runtime.recreate()
        logger.info("stack.updated", pull_failures=failed)
        return failed

    def scale(self, service: str, replicas: int) -> None:
        if replicas < 0:
            raise ValueError("replicas must be >= 0")
        self.runtime.scale(service, replicas)
        logger.info("stack.scaled", service=service, replicas=replicas)

    # Inspection

    def logs(self, service: str | None = None, lines: int | None = None) -> str:
        lines = self.config.log_tail_lines if lines is None else lines
        services = [service] if service else [d.name for d in self.runtime.list_services()]
        return "".join(self.runtime.tail_logs(name, lines) for name in services)

    def status(self) -> list[ServiceObservation]:
        """Classify every service once."""
        return list(observe(self.runtime, log_lines=0, workers=self.config.classify_workers) or ())

    def health(self) -> ConvergenceResult:
        """One convergence pass without waiting."""
        observations = observe(
            self.runtime,
            log_lines=self.config.log_tail_lines,
            workers=self.config.classify_workers,
        )
        converged = observations is not None and all(o.converged for o in observations)
        return ConvergenceResult(
            observations=observations or (),
            verdict=Verdict.CONVERGED if converged else Verdict.TIMED_OUT,
            elapsed_seconds=0.0,
            passes=1,
        )

    def validate(self) -> list[str]:
        """Validate compose config; returns the missing required secrets."""
        self.runtime.validate_config()
        missing = self.config.missing_secrets()
        for key in missing:
            logger.warning("stack.secret_missing", key=key)
        return missing

    # Backup

    def backup(self) -> BackupReport:
        return BackupManager(self.config, self.runtime, self.layers).backup()

    def restore(self, directory: Path) -> list[str]:
        return BackupManager(self.config, self.runtime, self.layers).restore(directory)


@dataclass
class EnvSetupResult:
    path: Path
    created: bool
    secrets: dict[str, str]
    written: list[str]


def env_setup(project_dir: Path, write: bool = False) -> EnvSetupResult:
    """Ensure ``.env`` exists and generate fresh secrets.

    With ``write=True`` the generated values fill blank keys in ``.env``;
    existing values are never replaced.
    """
    path, created = ensure_env_file(project_dir)
    values = generate_secrets()
    written = write_env_values(path, values) if write else []
    return EnvSetupResult(path=path, created=created, secrets=values, written=written)


__all__ = ["StackOperations", "EnvSetupResult", "env_setup"]
