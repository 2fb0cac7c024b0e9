"""Deployment orchestrator.

Sequences one deployment of the monitoring stack:

    environment -> prerequisites -> config -> confirmation -> backup
        -> images -> stop -> start -> convergence -> smoke -> summary

Every stage either completes (possibly appending warnings to the outcome)
or raises a :class:`~stackdeploy.core.errors.StackDeployError` subclass.
:meth:`DeploymentOrchestrator.deploy` catches that, records the halting
stage and the outcome kind, and always returns a
:class:`DeploymentOutcome`. There is no rollback and no retry beyond the
convergence poll and the HTTP probe retries.

Key Concepts:
    DeploymentOrchestrator: Holds the injected collaborators (runtime
        factory, confirmation callback, clock, sleep, stop event, HTTP
        client) so tests drive every stage without docker or a network.
    deploy(): Module-level convenience wrapper.
    _stage(): Context manager that names the running stage and converts
        a raw :class:`RuntimeCommandError` into the stage's failure class.

Related Modules:
    - :mod:`stackdeploy.deploy.compose` is the default runtime
    - :mod:`stackdeploy.deploy.convergence` implements the wait
    - :mod:`stackdeploy.deploy.smoke` implements the HTTP probes
    - :mod:`stackdeploy.deploy.report` persists the outcome

Tags:
    orchestrator, deployment, pipeline, stages, outcome
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

import httpx

from stackdeploy.core.errors import (
    BuildFailedError,
    ConfigInvalidError,
    ConvergenceTimeoutError,
    DeploymentCancelled,
    PrerequisiteMissingError,
    RestartFailedError,
    RuntimeCommandError,
    SmokeCheckFailedError,
    StackDeployError,
)
from stackdeploy.core.logging import LogContext, get_logger
from stackdeploy.deploy.backup import BackupManager
from stackdeploy.deploy.compose import ComposeRuntime, ContainerRuntime
from stackdeploy.deploy.config import (
    ComposeLayer,
    DeployConfig,
    Environment,
    parse_environment,
    resolve_compose_layers,
)
from stackdeploy.deploy.convergence import wait_for_convergence
from stackdeploy.deploy.report import summary_lines, write_summary
from stackdeploy.deploy.results import DeploymentOutcome, Stage
from stackdeploy.deploy.smoke import run_smoke_checks

logger = get_logger(__name__)

RuntimeFactory = Callable[[DeployConfig, list[ComposeLayer]], ContainerRuntime]
Confirm = Callable[[str], bool]


class DeploymentOrchestrator:
    """Runs the deployment pipeline against injected collaborators.

    Parameters
    ----------
    runtime_factory
        Builds the container runtime for the resolved compose layers.
        Defaults to :class:`ComposeRuntime`.
    confirm
        Asked before a production deployment. Without one, a production
        deployment is cancelled unless ``config.assume_yes`` is set.
    clock, sleep
        Time source and delay function for the settle pause, the
        convergence loop and the smoke retries.
    stop
        Ends the convergence wait early when set.
    http_client
        Client used by the smoke checks (one is created when omitted).
    now
        Wall clock for the backup directory name.
    """

    def __init__(
        self,
        runtime_factory: RuntimeFactory = ComposeRuntime,
        *,
        confirm: Confirm | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        stop: threading.Event | None = None,
        http_client: httpx.Client | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.runtime_factory = runtime_factory
        self.confirm = confirm
        self.clock = clock
        self.sleep = sleep
        self.stop = stop
        self.http_client = http_client
        self.now = now
        self._stage_name: Stage = Stage.ENVIRONMENT

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def deploy(self, environment: str | Environment, config: DeployConfig) -> DeploymentOutcome:
        """Run every stage and return the outcome. Never raises for a stage failure."""
        env_label = environment.value if isinstance(environment, Environment) else str(environment)
        outcome = DeploymentOutcome(run_id=config.run_id, environment=env_label)
        self._stage_name = Stage.ENVIRONMENT

        with LogContext(run_id=config.run_id, environment=env_label):
            logger.info("deploy.started", project=config.project_name)
            try:
                self._run(environment, config, outcome)
            except StackDeployError as exc:
                kind = exc.outcome or _STAGE_FAILURES[self._stage_name].outcome
                outcome.halt(kind, self._stage_name, exc.message)
                logger.error("deploy.halted", stage=self._stage_name.value, **exc.to_dict())

            outcome.mark_complete()
            self._report(config, outcome)
        return outcome

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    @contextmanager
    def _stage(self, stage: Stage) -> Iterator[None]:
        self._stage_name = stage
        logger.info("deploy.stage", stage=stage.value)
        try:
            yield
        except RuntimeCommandError as exc:
            raise _STAGE_FAILURES[stage](exc.message, cause=exc, stderr=exc.stderr) from exc

    def _run(
        self,
        environment: str | Environment,
        config: DeployConfig,
        outcome: DeploymentOutcome,
    ) -> None:
        with self._stage(Stage.ENVIRONMENT):
            env = parse_environment(environment)
            outcome.environment = env.value
            layers = resolve_compose_layers(config, env)
            outcome.compose_files = [str(layer.path) for layer in layers]
            runtime = self.runtime_factory(config, layers)

        with self._stage(Stage.PREREQUISITES):
            runtime.check_prerequisites()

        with self._stage(Stage.CONFIG):
            self._check_config(env, config, runtime, outcome)

        with self._stage(Stage.CONFIRMATION):
            self._confirm(env, config)

        with self._stage(Stage.BACKUP):
            report = BackupManager(config, runtime, layers, now=self.now).backup()
            outcome.backup = report
            for item in report.failed:
                self._warn(outcome, Stage.BACKUP, f"Backup of {item} failed")

        with self._stage(Stage.IMAGES):
            self._refresh_images(runtime, outcome)

        with self._stage(Stage.STOP):
            if runtime.list_services():
                runtime.stop_all()
                self.sleep(config.settle_seconds)
            else:
                logger.info("deploy.nothing_to_stop")

        with self._stage(Stage.START):
            runtime.start([layer.path for layer in layers])

        with self._stage(Stage.CONVERGENCE):
            result = wait_for_convergence(
                runtime,
                timeout=config.convergence_timeout_seconds,
                interval=config.poll_interval_seconds,
                clock=self.clock,
                sleep=self.sleep,
                stop=self.stop,
                workers=config.classify_workers,
                log_lines=config.log_tail_lines,
            )
            outcome.convergence = result
            if not result.converged:
                raise ConvergenceTimeoutError(
                    f"Services did not become healthy within {config.convergence_timeout_seconds:g}s: "
                    f"{', '.join(result.pending()) or 'service list unavailable'}",
                    pending=result.pending(),
                    passes=result.passes,
                )

        with self._stage(Stage.SMOKE):
            checks = run_smoke_checks(config, client=self.http_client, sleep=self.sleep)
            outcome.smoke_checks = checks
            for check in checks:
                if check.passed:
                    continue
                if check.primary:
                    raise SmokeCheckFailedError(
                        f"{check.name} health check failed: {check.url} ({check.error})",
                        url=check.url,
                    )
                self._warn(outcome, Stage.SMOKE, f"{check.name} check failed: {check.error}")

        self._stage_name = Stage.SUMMARY

    def _check_config(
        self,
        env: Environment,
        config: DeployConfig,
        runtime: ContainerRuntime,
        outcome: DeploymentOutcome,
    ) -> None:
        if config.env_file is None:
            self._warn(outcome, Stage.CONFIG, f"No env file found (.env.{env.value} or .env)")
        for key in config.missing_secrets():
            self._warn(outcome, Stage.CONFIG, f"{key} is not set")
        runtime.validate_config()

    def _confirm(self, env: Environment, config: DeployConfig) -> None:
        if env is not Environment.PRODUCTION or config.assume_yes:
            return
        prompt = "This will deploy to PRODUCTION. Continue?"
        answer = False
        if self.confirm is not None:
            try:
                answer = bool(self.confirm(prompt))
            except Exception as exc:
                logger.warning("deploy.confirm_failed", error=f"{type(exc).__name__}: {exc}")
        if not answer:
            raise DeploymentCancelled("Deployment cancelled by operator")
        logger.info("deploy.confirmed")

    def _refresh_images(self, runtime: ContainerRuntime, outcome: DeploymentOutcome) -> None:
        try:
            services = runtime.declared_services()
        except RuntimeCommandError as exc:
            self._warn(outcome, Stage.IMAGES, f"Could not list declared services: {exc.message}")
            services = []
        for service in services:
            try:
                runtime.pull(service)
            except RuntimeCommandError as exc:
                self._warn(outcome, Stage.IMAGES, f"Pull failed for {service}: {exc.stderr or exc.message}")
        runtime.build()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _warn(self, outcome: DeploymentOutcome, stage: Stage, message: str) -> None:
        outcome.add_warning(stage, message)
        logger.warning("deploy.warning", stage=stage.value, message=message)

    def _report(self, config: DeployConfig, outcome: DeploymentOutcome) -> None:
        for line in summary_lines(outcome):
            logger.info("deploy.summary", line=line)
        logger.info(
            "deploy.completed",
            outcome=outcome.kind.value,
            halted_stage=outcome.halted_stage.value if outcome.halted_stage else None,
            warnings=len(outcome.warnings),
            duration_seconds=outcome.duration_seconds,
        )
        if config.output_dir is not None:
            try:
                write_summary(outcome, config.output_dir)
            except OSError as exc:
                logger.warning("summary.write_failed", error=str(exc))


# Failure class raised when a stage hits a raw runtime error
_STAGE_FAILURES: dict[Stage, type[StackDeployError]] = {
    Stage.ENVIRONMENT: PrerequisiteMissingError,
    Stage.PREREQUISITES: PrerequisiteMissingError,
    Stage.CONFIG: ConfigInvalidError,
    Stage.CONFIRMATION: DeploymentCancelled,
    Stage.BACKUP: RestartFailedError,
    Stage.IMAGES: BuildFailedError,
    Stage.STOP: RestartFailedError,
    Stage.START: RestartFailedError,
    Stage.CONVERGENCE: ConvergenceTimeoutError,
    Stage.SMOKE: SmokeCheckFailedError,
    Stage.SUMMARY: RestartFailedError,
}


def deploy(
    environment: str | Environment,
    config: DeployConfig,
    **collaborators: object,
) -> DeploymentOutcome:
    """Deploy the stack to *environment*; see :class:`DeploymentOrchestrator`."""
    return DeploymentOrchestrator(**collaborators).deploy(environment, config)  # type: ignore[arg-type]


__all__ = ["DeploymentOrchestrator", "deploy"]
