"""Container runtime adapter for the monitoring stack.

Every interaction with docker goes through the :class:`ContainerRuntime`
protocol. :class:`ComposeRuntime` implements it with subprocess calls to
the ``docker`` CLI and the compose CLI (the ``docker compose`` plugin,
falling back to the standalone ``docker-compose`` binary). No ``docker-py``
dependency.

Key Concepts:
    ContainerRuntime: Protocol the orchestrator, poll loop and stack
        operations depend on. Tests substitute a fake.
    ComposeRuntime: Subprocess implementation. Commands are argument
        lists, never shell strings. A non-zero exit or a timeout raises
        :class:`~stackdeploy.core.errors.RuntimeCommandError`; callers
        decide whether that is fatal.
    Health probe states: ``inspect_health()`` returns the raw docker
        state (``starting``, ``healthy``, ``unhealthy``) or ``none`` when
        the container declares no healthcheck.

Architecture Decisions:
    - Lazy CLI discovery: nothing is executed until the first command, so
      rejecting a bad environment selector never touches docker.
    - ``ps --all --format json`` output is accepted both as one object
      per line (compose >= 2.21) and as a single JSON array (older
      releases).
    - Container state comes from ``docker inspect --format '{{json .State}}'``
      so one call answers both "running?" and "health?".

Related Modules:
    - :mod:`stackdeploy.deploy.convergence` classifies services through it
    - :mod:`stackdeploy.deploy.backup` archives volumes through it
    - :mod:`stackdeploy.deploy.config` resolves the compose layers

Tags:
    container, docker, compose, subprocess, runtime, adapter
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from stackdeploy.core.errors import (
    ConfigInvalidError,
    PrerequisiteMissingError,
    RuntimeCommandError,
)
from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.config import BASE_COMPOSE_FILE, ComposeLayer, DeployConfig
from stackdeploy.deploy.results import ServiceDescriptor

logger = get_logger(__name__)

BUILD_ENV = {"DOCKER_BUILDKIT": "1", "COMPOSE_DOCKER_CLI_BUILD": "1"}


@runtime_checkable
class ContainerRuntime(Protocol):
    """Operations the deploy pipeline needs from the container runtime."""

    def check_prerequisites(self) -> None: ...

    def validate_config(self) -> None: ...

    def declared_services(self) -> list[str]: ...

    def list_services(self) -> list[ServiceDescriptor]: ...

    def inspect_health(self, service: str) -> str: ...

    def is_running(self, service: str) -> bool: ...

    def pull(self, service: str) -> None: ...

    def build(self, *services: str) -> None: ...

    def stop_all(self) -> None: ...

    def start(self, files: list[Path]) -> None: ...

    def tail_logs(self, service: str, lines: int) -> str: ...

    def restart(self) -> None: ...

    def recreate(self) -> None: ...

    def scale(self, service: str, replicas: int) -> None: ...

    def volume_exists(self, volume: str) -> bool: ...

    def archive_volume(self, volume: str, dest_dir: Path) -> Path: ...

    def restore_volume(self, volume: str, archive: Path) -> None: ...


class ComposeRuntime:
    """Subprocess-backed :class:`ContainerRuntime`.

    Parameters
    ----------
    config
        Supplies project name/directory, env file, timeouts and the
        backup image.
    layers
        Ordered compose files. Defaults to the base file only.

    Example::

        runtime = ComposeRuntime(config, resolve_compose_layers(config, env))
        runtime.check_prerequisites()
        runtime.start([layer.path for layer in runtime.layers])
    """

    def __init__(self, config: DeployConfig, layers: list[ComposeLayer] | None = None) -> None:
        self.config = config
        self.layers = layers or [
            ComposeLayer(path=config.project_dir / BASE_COMPOSE_FILE, role="base")
        ]
        self._docker: str | None = None
        self._compose: list[str] | None = None

    # ------------------------------------------------------------------
    # CLI discovery
    # ------------------------------------------------------------------

    def _find_docker(self) -> str:
        if self._docker is None:
            docker = shutil.which("docker")
            if docker is None:
                raise PrerequisiteMissingError("Docker CLI not found on PATH")
            self._docker = docker
        return self._docker

    def _find_compose(self) -> list[str]:
        if self._compose is None:
            docker = self._find_docker()
            probe = self._exec([docker, "compose", "version"], check=False, timeout=30)
            if probe.returncode == 0:
                self._compose = [docker, "compose"]
            else:
                standalone = shutil.which("docker-compose")
                if standalone is None:
                    raise PrerequisiteMissingError(
                        "Docker Compose not found (neither 'docker compose' nor 'docker-compose')"
                    )
                self._compose = [standalone]
        return self._compose

    def check_prerequisites(self) -> None:
        """Docker binary, compose CLI and a reachable daemon, or raise."""
        docker = self._find_docker()
        compose = self._find_compose()
        info = self._exec([docker, "info"], check=False, timeout=30)
        if info.returncode != 0:
            raise PrerequisiteMissingError(
                "Docker daemon is not reachable", stderr=info.stderr.strip()
            )
        logger.info("runtime.prerequisites_ok", compose=" ".join(compose))

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def _exec(
        self,
        cmd: list[str],
        check: bool = True,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a CLI command."""
        timeout = timeout or self.config.command_timeout_seconds
        logger.debug("docker.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.config.project_dir,
                env={**os.environ, **env} if env else None,
            )
        except subprocess.TimeoutExpired as exc:
            raise RuntimeCommandError(
                f"Command timed out after {timeout}s: {' '.join(cmd[1:])}",
                args=cmd,
                cause=exc,
            ) from exc
        except OSError as exc:
            raise RuntimeCommandError(
                f"Command could not be executed: {' '.join(cmd)}",
                args=cmd,
                cause=exc,
            ) from exc
        if check and result.returncode != 0:
            raise RuntimeCommandError(
                f"Command failed (exit {result.returncode}): {' '.join(cmd[1:])}",
                args=cmd,
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result

    def _compose_args(self, files: list[Path] | None = None) -> list[str]:
        args = [*self._find_compose(), "--project-name", self.config.project_name]
        if self.config.env_file is not None:
            args.extend(["--env-file", str(self.config.env_file)])
        for path in files if files is not None else [layer.path for layer in self.layers]:
            args.extend(["-f", str(path)])
        return args

    def _run_compose(
        self,
        args: list[str],
        check: bool = True,
        files: list[Path] | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return self._exec([*self._compose_args(files), *args], check=check, env=env)

    def _run_docker(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        return self._exec([self._find_docker(), *args], check=check)

    # ------------------------------------------------------------------
    # Configuration and enumeration
    # ------------------------------------------------------------------

    def validate_config(self) -> None:
        """``compose config -q``; raises ConfigInvalidError when rejected."""
        result = self._run_compose(["config", "-q"], check=False)
        if result.returncode != 0:
            raise ConfigInvalidError(
                "Docker Compose configuration is invalid",
                stderr=result.stderr.strip(),
            )

    def declared_services(self) -> list[str]:
        result = self._run_compose(["config", "--services"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def list_services(self) -> list[ServiceDescriptor]:
        """Services currently known to compose (running or not)."""
        result = self._run_compose(["ps", "--all", "--format", "json"])
        descriptors: list[ServiceDescriptor] = []
        seen: set[str] = set()
        for entry in parse_ps_output(result.stdout):
            name = entry.get("Service") or entry.get("Name")
            if not name or name in seen:
                continue
            seen.add(name)
            descriptors.append(
                ServiceDescriptor(name=name, has_healthcheck=_healthcheck_declared(entry))
            )
        return descriptors

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _container_state(self, service: str) -> dict[str, Any]:
        result = self._run_compose(["ps", "--all", "-q", service])
        container_ids = result.stdout.split()
        if not container_ids:
            raise RuntimeCommandError(f"No container found for service {service!r}")
        inspected = self._run_docker(["inspect", "--format", "{{json .State}}", container_ids[0]])
        try:
            return json.loads(inspected.stdout)
        except json.JSONDecodeError as exc:
            raise RuntimeCommandError(
                f"Unreadable state for service {service!r}", cause=exc
            ) from exc

    def inspect_health(self, service: str) -> str:
        """Raw health probe state, or ``none`` when no healthcheck is declared."""
        health = self._container_state(service).get("Health")
        if not health:
            return "none"
        return str(health.get("Status", "")).lower()

    def is_running(self, service: str) -> bool:
        return bool(self._container_state(service).get("Running", False))

    def tail_logs(self, service: str, lines: int) -> str:
        result = self._run_compose(["logs", "--no-color", f"--tail={lines}", service])
        return result.stdout + result.stderr

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def pull(self, service: str) -> None:
        """Pull one service's image; services with a ``build:`` section are skipped."""
        self._run_compose(["pull", "--ignore-buildable", service])

    def build(self, *services: str) -> None:
        """Build images with BuildKit, always pulling fresh bases."""
        self._run_compose(["build", "--pull", "--no-cache", *services], env=BUILD_ENV)

    def stop_all(self) -> None:
        self._run_compose(["down", "--remove-orphans"])

    def start(self, files: list[Path]) -> None:
        self._run_compose(["up", "-d", "--remove-orphans"], files=files)

    def restart(self) -> None:
        self._run_compose(["restart"])

    def recreate(self) -> None:
        self._run_compose(["up", "-d", "--force-recreate"])

    def scale(self, service: str, replicas: int) -> None:
        self._run_compose(
            ["up", "-d", "--scale", f"{service}={replicas}", "--no-recreate", service]
        )

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def volume_exists(self, volume: str) -> bool:
        result = self._run_docker(["volume", "inspect", volume], check=False)
        return result.returncode == 0

    def archive_volume(self, volume: str, dest_dir: Path) -> Path:
        """Tar a named volume into ``dest_dir/<volume>.tar.gz``."""
        dest_dir = dest_dir.resolve()
        self._run_docker(
            [
                "run", "--rm",
                "-v", f"{volume}:/source:ro",
                "-v", f"{dest_dir}:/backup",
                self.config.backup_image,
                "tar", "-czf", f"/backup/{volume}.tar.gz", "-C", "/source", ".",
            ]
        )
        return dest_dir / f"{volume}.tar.gz"

    def restore_volume(self, volume: str, archive: Path) -> None:
        """Replace a volume's contents with an archive made by archive_volume."""
        archive = archive.resolve()
        self._run_docker(
            [
                "run", "--rm",
                "-v", f"{volume}:/target",
                "-v", f"{archive.parent}:/backup:ro",
                self.config.backup_image,
                "sh", "-c",
                f"rm -rf /target/* /target/..?* /target/.[!.]* ; tar -xzf /backup/{archive.name} -C /target",
            ]
        )


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def parse_ps_output(stdout: str) -> list[dict[str, Any]]:
    """Parse ``compose ps --format json`` (array or one object per line)."""
    text = stdout.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("runtime.ps_unparseable", output=text[:200])
            return []
        return [d for d in data if isinstance(d, dict)]
    entries: list[dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("runtime.ps_line_unparseable", line=line[:200])
            continue
        if isinstance(data, dict):
            entries.append(data)
    return entries


def _healthcheck_declared(entry: dict[str, Any]) -> bool | None:
    """Whether the ps entry shows a healthcheck; None when it cannot tell.

    Compose leaves ``Health`` empty both for containers without a
    healthcheck and for containers that are not running.
    """
    if entry.get("Health"):
        return True
    if str(entry.get("State", "")).lower() == "running":
        return False
    return None


__all__ = [
    "BUILD_ENV",
    "ContainerRuntime",
    "ComposeRuntime",
    "parse_ps_output",
]
